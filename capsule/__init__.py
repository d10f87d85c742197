# FILE: capsule/__init__.py
"""
Memory Capsule backend
"""
__version__ = "0.3.0"
