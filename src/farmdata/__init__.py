"""
Farmer data aggregation: turns a stored farmer profile plus live
environmental sources into one context for the recommendation generator.

Modules:
    models     — Records, value objects and capability Protocols
    errors     — Precondition failures raised to callers
    geo        — Resolve farm coordinates from the location string or field boundary
    polygons   — Resolve the remote monitoring polygon for field-scoped queries
    fetchers   — Weather / forecast / NDVI / soil / UV fetches with per-call timeouts
    aggregator — Orchestrate the above into an AggregatedFarmerContext
"""
