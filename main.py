# main.py — mounts the authorization middleware and admin routes

import logging
from typing import Optional

from fastapi import FastAPI, Request

from adapters.actors import ActorStore, InMemoryActorStore
from api.admin.roles import router as admin_roles_router
from api.guards import require
from api.middleware.roles import AuthorizationMiddleware
from app.settings import get_settings
from core.metrics import get_rbac_metrics
from core.rbac import AuthorizationGate, configure_authorization

logger = logging.getLogger(__name__)


def create_app(
    actor_store: Optional[ActorStore] = None,
    gate: Optional[AuthorizationGate] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Authorization config is loaded before the app is created; a bad role
    map stops startup with a ConfigurationError instead of serving
    requests under a half-applied policy.

    Args:
        actor_store: Actor lookup used by the middleware (empty in-memory
            store when omitted)
        gate: Pre-built gate; configured from settings when omitted
    """
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL)

    if gate is None:
        gate = configure_authorization(settings)

    app = FastAPI(
        title="Role Capability Service",
        version="0.1.0",
        description="Resolves actor roles into abilities and answers authorization checks.",
    )
    app.add_middleware(
        AuthorizationMiddleware,
        actor_store=actor_store or InMemoryActorStore(),
        gate=gate,
    )
    app.include_router(admin_roles_router)

    @app.get("/healthz")
    async def healthz():
        """Minimal liveness probe."""
        return {"status": "ok", "registry_generation": gate.registry.generation}

    @app.get("/debug/rbac")
    @require("view", "metrics")
    def debug_rbac(request: Request):
        """Authorization counters and ability cache stats."""
        return {
            "metrics": get_rbac_metrics(),
            "cache": gate.cache.get_stats() if gate.cache is not None else None,
        }

    logger.info(f"Application created (registry generation={gate.registry.generation})")
    return app
