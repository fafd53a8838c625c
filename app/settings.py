from __future__ import annotations

from functools import lru_cache
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Role map
    RBAC_ROLES_FILE: Optional[str] = Field(None, description="YAML file mapping roles to permission sets")
    RBAC_DECLARED_ROLES: Annotated[List[str], NoDecode] = Field(
        default_factory=list, description="Roles that exist but grant nothing until assigned"
    )
    RBAC_IMPLICIT_ROLES: Annotated[List[str], NoDecode] = Field(
        default_factory=list, description="Roles applied to every actor"
    )

    # Ability cache
    RBAC_ABILITY_CACHE_ENABLED: bool = True
    RBAC_ABILITY_CACHE_TTL_SECONDS: float = Field(60.0, gt=0)
    RBAC_ABILITY_CACHE_MAX_ENTRIES: int = Field(1024, ge=1)

    LOG_LEVEL: str = "INFO"

    @field_validator("RBAC_DECLARED_ROLES", "RBAC_IMPLICIT_ROLES", mode="before")
    @classmethod
    def _split_roles(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [part.strip().lower() for part in v.split(",") if part.strip()]
        return [str(part).strip().lower() for part in v if str(part).strip()]

    @field_validator("LOG_LEVEL")
    @classmethod
    def _log_level_upper(cls, v: str) -> str:
        return (v or "INFO").upper()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
