"""
Concrete bindings for the weather and satellite capability interfaces.

Modules:
    agromonitoring — Agromonitoring REST client plus payload converters
"""
