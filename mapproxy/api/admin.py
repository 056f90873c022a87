"""Admin API for managing id -> url mappings.

Every route here sits behind HTTP Basic; a rejected request never touches the
store.
"""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from mapproxy.api.deps import get_store
from mapproxy.core.errors import StoreError
from mapproxy.core.logging import get_logger
from mapproxy.core.security import require_admin
from mapproxy.models.schemas import RESERVED_IDS, Mapping, MappingIn
from mapproxy.services.store import MappingStore

log = get_logger("admin")
router = APIRouter(dependencies=[Depends(require_admin)])


def _to_mapping(mapping_id: str, body: MappingIn) -> Mapping:
    if mapping_id in RESERVED_IDS:
        raise HTTPException(400, detail=f"id {mapping_id!r} is reserved")
    try:
        return Mapping(id=mapping_id, url=body.url)
    except ValidationError as e:
        raise HTTPException(422, detail=e.errors(include_url=False, include_context=False))


@router.get("/mappings", response_model=List[Mapping])
async def list_mappings(store: MappingStore = Depends(get_store)):
    """List every mapping."""
    try:
        return await store.list()
    except StoreError as e:
        log.error("listing mappings failed: %s", e)
        raise HTTPException(500, detail="Failed to list mappings")


@router.post("/mappings", response_model=Mapping)
async def create_mapping(body: MappingIn, store: MappingStore = Depends(get_store)):
    """Create a mapping; 409 if the id is already taken."""
    if not body.id:
        raise HTTPException(422, detail="id is required")
    mapping = _to_mapping(body.id, body)
    try:
        if await store.get(mapping.id) is not None:
            raise HTTPException(409, detail="Mapping already exists")
        saved = await store.put(mapping)
    except StoreError as e:
        log.error("creating mapping %s failed: %s", mapping.id, e)
        raise HTTPException(500, detail="Failed to create mapping")
    log.info("created mapping %s -> %s", saved.id, saved.url)
    return saved


@router.put("/mappings/{mapping_id}", response_model=Mapping)
async def update_mapping(mapping_id: str, body: MappingIn, store: MappingStore = Depends(get_store)):
    """Create or replace the mapping at ``mapping_id``; the path id wins over the body."""
    if body.id is not None and body.id != mapping_id:
        log.info("ignoring body id %s on update of %s", body.id, mapping_id)
    mapping = _to_mapping(mapping_id, body)
    try:
        saved = await store.put(mapping)
    except StoreError as e:
        log.error("updating mapping %s failed: %s", mapping_id, e)
        raise HTTPException(500, detail="Failed to update mapping")
    log.info("updated mapping %s -> %s", saved.id, saved.url)
    return saved


@router.delete("/mappings/{mapping_id}")
async def delete_mapping(mapping_id: str, store: MappingStore = Depends(get_store)):
    try:
        removed = await store.delete(mapping_id)
    except StoreError as e:
        log.error("deleting mapping %s failed: %s", mapping_id, e)
        raise HTTPException(500, detail="Failed to delete mapping")
    if not removed:
        raise HTTPException(404, detail="Mapping not found")
    log.info("deleted mapping %s", mapping_id)
    return {"status": "deleted"}
