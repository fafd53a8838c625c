"""
API endpoint guards for ability-based authorization.

Provides decorators to protect FastAPI routes with (action, subject tag)
checks against the request actor's Ability. Instance-level checks (an
order the actor owns, say) belong in the handler via ``ctx.can``.
"""

import inspect
import logging
from functools import wraps
from typing import Any, Callable, Optional, Sequence, Tuple

from fastapi import HTTPException, Request, status

from api.middleware.roles import RequestContext, get_current_context
from core.metrics import audit_authorization_denial, record_authorization_check

logger = logging.getLogger(__name__)

Check = Tuple[str, str]


# ============================================================================
# Guard Decorators
# ============================================================================

def require(action: str, subject: str) -> Callable:
    """
    Decorator to require permission for (action, subject) on a route.

    Raises HTTPException 403 when the request actor's Ability denies it.

    Examples:
        >>> @app.delete("/products/{product_id}")
        >>> @require("destroy", "product")
        >>> def delete_product(request: Request, product_id: str):
        >>>     return {"status": "deleted"}
    """
    return _guard([(action, subject)], require_all=True)


def require_any(*checks: Check) -> Callable:
    """
    Decorator to require ANY of the given (action, subject) pairs.

    Examples:
        >>> @app.get("/orders")
        >>> @require_any(("view", "order"), ("*", "order"))
        >>> def list_orders(request: Request):
        >>>     ...
    """
    return _guard(list(checks), require_all=False)


def require_all(*checks: Check) -> Callable:
    """Decorator to require ALL of the given (action, subject) pairs."""
    return _guard(list(checks), require_all=True)


# ============================================================================
# Internals
# ============================================================================

def _guard(checks: Sequence[Check], require_all: bool) -> Callable:
    if not checks:
        raise ValueError("At least one (action, subject) check is required")

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            _authorize(_extract_request_from_args(args, kwargs), checks, require_all)
            return await func(*args, **kwargs)

        @wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            _authorize(_extract_request_from_args(args, kwargs), checks, require_all)
            return func(*args, **kwargs)

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def _authorize(request: Optional[Request], checks: Sequence[Check], require_all: bool) -> RequestContext:
    if request is None:
        logger.error("Guarded route requires a Request parameter")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error: Request not found",
        )

    try:
        ctx = get_current_context(request)
    except AttributeError:
        logger.error("Request context not available. Is AuthorizationMiddleware configured?")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error: Authorization context not available",
        )

    route = str(request.url.path)
    # Metric labels use the matched template so path parameters stay out of them
    route_template = getattr(request.scope.get("route"), "path", None) or route
    results = []
    for action, subject in checks:
        allowed = ctx.can(action, subject)
        record_authorization_check(allowed, action, subject, route=route_template)
        results.append(allowed)

    granted = all(results) if require_all else any(results)
    if granted:
        logger.debug(f"Access granted: actor_id={ctx.actor_id}, roles={ctx.roles}, checks={list(checks)}")
        return ctx

    denied = [check for check, allowed in zip(checks, results) if not allowed]
    for action, subject in denied:
        audit_authorization_denial(
            action=action,
            subject=subject,
            actor_id=ctx.actor_id,
            roles=ctx.roles,
            route=route,
            method=request.method,
            metadata={"is_authenticated": ctx.is_authenticated, "route_template": route_template},
        )

    logger.warning(f"Access denied: actor_id={ctx.actor_id}, roles={ctx.roles}, denied={denied}")
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "error": "forbidden",
            "denied": [{"action": action, "subject": subject} for action, subject in denied],
            "message": "Not authorized to perform this action",
        },
    )


def _extract_request_from_args(args: tuple, kwargs: dict) -> Optional[Request]:
    """Find the Request among a route handler's arguments."""
    request = kwargs.get("request")
    if isinstance(request, Request):
        return request
    for arg in args:
        if isinstance(arg, Request):
            return arg
    for value in kwargs.values():
        if isinstance(value, Request):
            return value
    return None
