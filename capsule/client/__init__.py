# FILE: capsule/client/__init__.py
"""
Device-side client: HTTP API client and ownership ledger
"""
