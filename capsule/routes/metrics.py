# FILE: capsule/routes/metrics.py
"""
Metrics endpoints
"""
from fastapi import APIRouter, Query

from capsule.services.telemetry import get_telemetry_summary

router = APIRouter()


@router.get("/telemetry")
async def telemetry(limit: int = Query(20, ge=1, le=200)):
    """Recent lifecycle events, including codes omitted from summary lists"""
    return get_telemetry_summary(limit=limit)
