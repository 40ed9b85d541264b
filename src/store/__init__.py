"""
Persistent storage for users, farms, fields and farmer profiles.

Modules:
    models        — SQLAlchemy ORM tables
    profile_store — Async ProfileStore implementation over SQLAlchemy
"""
