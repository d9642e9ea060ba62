"""
Core Records and Persistence

Components:
- db: SQLite-backed JSON document store
- records: Security, lot, trade-history, account, settings and series records
- repository: In-memory record graph with read snapshots and per-security write locks

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

__all__ = ['db', 'records', 'repository']
