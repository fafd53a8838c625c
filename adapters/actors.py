# adapters/actors.py — actor lookup contract used by the HTTP layer

import logging
import threading
from typing import Any, Dict, Mapping, Optional, Protocol

from core.rbac.actor import Actor

logger = logging.getLogger(__name__)


class ActorStore(Protocol):
    """
    Narrow lookup contract for the data store that owns actors and their
    role assignments. Authentication happens before this is called; the
    store only maps an already-verified credential to an Actor.
    """

    def find_by_api_key(self, api_key: str) -> Optional[Actor]:
        ...


class InMemoryActorStore:
    """Dictionary-backed ActorStore for tests and local runs."""

    def __init__(self, actors: Optional[Mapping[str, Actor]] = None):
        self._actors: Dict[str, Actor] = dict(actors or {})
        self._lock = threading.Lock()

    @classmethod
    def from_mapping(cls, api_key_to_user_map: Mapping[str, Mapping[str, Any]]) -> "InMemoryActorStore":
        """
        Build a store from ``{api_key: {"user_id": ..., "roles": [...], "email": ...}}``.

        A single role may be given as a string.
        """
        actors = {}
        for api_key, info in api_key_to_user_map.items():
            actors[api_key] = Actor(
                id=info.get("user_id"),
                roles=info.get("roles", ()),
                email=info.get("email"),
            )
        return cls(actors)

    def find_by_api_key(self, api_key: str) -> Optional[Actor]:
        if not api_key:
            return None
        actor = self._actors.get(api_key)
        if actor is None:
            logger.warning(f"Unknown API key: {api_key[:8]}...")
        return actor

    def put(self, api_key: str, actor: Actor) -> None:
        with self._lock:
            self._actors[api_key] = actor
