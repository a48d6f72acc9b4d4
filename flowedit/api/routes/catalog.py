"""
Catalog API Routes.

Endpoints for listing the modules that can be dropped onto a flow and the
node-type variants they produce.
"""

from typing import List
from fastapi import APIRouter, HTTPException
import logging

from flowedit.api.schemas import (
    ErrorResponse,
    ModuleInfo,
    ModuleListResponse,
    NodeTypeInfo,
)
from flowedit.catalog.registry import module_catalog
from flowedit.engine.registry import node_type_registry


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/catalog", tags=["Catalog"])


@router.get(
    "/",
    response_model=ModuleListResponse,
)
async def list_modules() -> ModuleListResponse:
    """
    List all catalog modules.

    Branching modules include their output bounds, output kind and the
    policy for deleting a single output.
    """
    modules = [ModuleInfo(**info) for info in module_catalog.list_modules()]
    return ModuleListResponse(modules=modules, total=len(modules))


@router.get(
    "/node-types",
    response_model=List[NodeTypeInfo],
)
async def list_node_types() -> List[NodeTypeInfo]:
    """List the node-type variants and their handle capabilities."""
    return [NodeTypeInfo(**record.to_dict()) for record in node_type_registry]


@router.get(
    "/{name}",
    response_model=ModuleInfo,
    responses={404: {"model": ErrorResponse}},
)
async def get_module(name: str) -> ModuleInfo:
    """Get a single module by name."""
    spec = module_catalog.get(name)
    if not spec:
        raise HTTPException(
            status_code=404,
            detail=f"Module '{name}' not found"
        )
    return ModuleInfo(**spec.to_dict())
