# FILE: capsule/routes/memory.py
"""
Memory endpoints
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, Response

from capsule.models.memory import MemoryCreateRequest, MemoryListRequest, MemoryUpdateRequest
from capsule.services.memory_service import MemoryService, get_memory_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/memory", status_code=201)
async def create_memory(
    request: MemoryCreateRequest,
    service: MemoryService = Depends(get_memory_service)
):
    """Create a memory; the response carries the secret key exactly once"""
    created = await service.create_memory(request)
    return created.model_dump(by_alias=True)


@router.get("/memory/check/{code}")
async def check_memory(code: str, service: MemoryService = Depends(get_memory_service)):
    """Report whether a code is taken"""
    return {"code": code, "exists": await service.memory_exists(code)}


@router.get("/memory/{code}")
async def get_memory(code: str, service: MemoryService = Depends(get_memory_service)):
    """Retrieve a memory (never includes the secret key)"""
    return await service.get_memory(code)


@router.post("/memories/list")
async def list_memories(
    request: MemoryListRequest,
    service: MemoryService = Depends(get_memory_service)
):
    """Summaries for the given codes; unknown codes are left out"""
    logger.info(f"List summaries for {len(request.codes)} codes")
    return await service.list_memory_summaries(request.codes)


@router.put("/memory/{code}")
async def update_memory(
    code: str,
    request: MemoryUpdateRequest,
    x_edit_key: Optional[str] = Header(None),
    service: MemoryService = Depends(get_memory_service)
):
    """Partially update a memory owned by the caller"""
    return await service.update_memory(code, x_edit_key, request)


@router.delete("/memory/{code}", status_code=204)
async def delete_memory(
    code: str,
    x_edit_key: Optional[str] = Header(None),
    service: MemoryService = Depends(get_memory_service)
):
    """Permanently delete a memory and its images (idempotent)"""
    await service.delete_memory(code, x_edit_key)
    return Response(status_code=204)
