# FILE: capsule/middleware/__init__.py
"""
ASGI middleware
"""
