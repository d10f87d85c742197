# FILE: capsule/routes/__init__.py
"""
API routers
"""
