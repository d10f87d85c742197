# FILE: capsule/models/__init__.py
"""
Pydantic models for request/response validation
"""
from capsule.models.memory import *
