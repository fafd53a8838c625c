"""
Role administration API endpoints.

Read-only reports of what each role can do, plus wholesale reassignment
of a role's permission sets. Protected by ``view``/``update`` on ``role``.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field, field_validator

from api.guards import require
from api.middleware.roles import get_current_context
from core.rbac import ConfigurationError, get_role_description

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin", "roles"])


# ============================================================================
# Request/Response Models
# ============================================================================

class RoleAssignmentRequest(BaseModel):
    """Full list of permission sets to bind to a role."""
    model_config = ConfigDict(
        json_schema_extra={"example": {"permission_sets": ["OrderManagement", "ProductManagement"]}}
    )

    permission_sets: List[str] = Field(..., description="Ordered permission-set identifiers")

    @field_validator("permission_sets")
    @classmethod
    def _strip_ids(cls, v: List[str]) -> List[str]:
        ids = [i.strip() for i in v]
        if any(not i for i in ids):
            raise ValueError("Permission set identifiers cannot be empty")
        return ids


class RoleResponse(BaseModel):
    role: str
    permission_sets: List[str]
    generation: int
    description: str = ""


class RoleListResponse(BaseModel):
    generation: int
    roles: Dict[str, List[str]]


class RuleEntry(BaseModel):
    action: str
    subject: str
    effect: str
    scoped: bool
    scope: Optional[str] = None
    sources: List[str] = Field(default_factory=list)


class RoleAbilityResponse(BaseModel):
    """What a role can do, as resolved right now."""
    role: str
    generation: int
    permission_sets: List[str]
    rules: List[RuleEntry]


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/roles", response_model=RoleListResponse)
@require("view", "role")
def list_roles(request: Request) -> Dict[str, Any]:
    snapshot = get_current_context(request).gate.registry.snapshot()
    return {"generation": snapshot.generation, "roles": snapshot.to_dict()}


@router.get("/permission-sets")
@require("view", "role")
def list_permission_sets(request: Request) -> Dict[str, str]:
    return get_current_context(request).gate.registry.catalog.describe()


@router.get("/roles/{role}", response_model=RoleResponse)
@require("view", "role")
def get_role(request: Request, role: str) -> Dict[str, Any]:
    snapshot = get_current_context(request).gate.registry.snapshot()
    try:
        permission_sets = list(snapshot.require(role))
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    name = role.strip().lower()
    return {
        "role": name,
        "permission_sets": permission_sets,
        "generation": snapshot.generation,
        "description": get_role_description(name),
    }


@router.get("/roles/{role}/abilities", response_model=RoleAbilityResponse)
@require("view", "role")
def get_role_abilities(request: Request, role: str) -> Dict[str, Any]:
    gate = get_current_context(request).gate
    try:
        return gate.report_for_role(role)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.put("/roles/{role}", response_model=RoleResponse)
@require("update", "role")
def assign_role_permissions(request: Request, role: str, body: RoleAssignmentRequest) -> Dict[str, Any]:
    ctx = get_current_context(request)
    try:
        snapshot = ctx.gate.registry.assign_permissions(role, body.permission_sets)
    except ConfigurationError as e:
        logger.warning(f"Rejected role assignment by actor={ctx.actor_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "error": "configuration_error",
                "message": str(e),
                "permission_set": e.permission_set,
            },
        )

    logger.info(
        f"Actor {ctx.actor_id} set role {role} -> {body.permission_sets} "
        f"(generation={snapshot.generation})"
    )
    name = role.strip().lower()
    return {
        "role": name,
        "permission_sets": list(snapshot.lookup(name)),
        "generation": snapshot.generation,
    }
