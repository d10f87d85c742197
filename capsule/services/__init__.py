# FILE: capsule/services/__init__.py
"""
Stores, adapters and the memory record service
"""
