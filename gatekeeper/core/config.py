"""
Authorization configuration.

The configuration is an explicit object built once and handed to the
composition root (``gatekeeper.main.Gatekeeper``), which passes it to every
resolver. Nothing in the package reads it from a global.

Environment variables (read by ``AuthzConfig.from_env``, after loading ``.env``):
    GATEKEEPER_DATABASE_URL     sqlite:///./gatekeeper.db
    GATEKEEPER_USE_TEAMS        "1" to enable team scoping
    GATEKEEPER_USE_MODULES      "1" to enable modules
    GATEKEEPER_USE_CACHE        "0" to disable the cache
    GATEKEEPER_CACHE_TTL        seconds, default 60
    GATEKEEPER_TEAMS_STRICT     "1" to make team-less checks global-only
"""
import os
from typing import Dict

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Load environment variables from .env file
load_dotenv()


DEFAULT_DATABASE_URL = "sqlite:///./gatekeeper.db"


class TableNames(BaseModel):
    """Names of the junction tables."""
    model_config = ConfigDict(frozen=True)

    role_user: str = "role_user"
    permission_user: str = "permission_user"
    module_user: str = "module_user"
    permission_role: str = "permission_role"
    module_role: str = "module_role"
    permission_module: str = "permission_module"


class ForeignKeyNames(BaseModel):
    """Column names used for the foreign keys inside the junction tables."""
    model_config = ConfigDict(frozen=True)

    user: str = "user_id"
    role: str = "role_id"
    permission: str = "permission_id"
    module: str = "module_id"
    team: str = "team_id"


class AuthzConfig(BaseModel):
    """
    Options consumed by the authorization core.

    ``user_models`` maps a relation name (used by ``RoleResolver.principals``)
    to the principal kind stored in the ``user_type`` column.
    """
    model_config = ConfigDict(frozen=True)

    database_url: str = DEFAULT_DATABASE_URL
    use_teams: bool = False
    use_modules: bool = False
    use_cache: bool = True
    cache_ttl: int = Field(60, ge=0, description="Cache TTL in seconds")
    teams_strict_check: bool = False
    tables: TableNames = Field(default_factory=TableNames)
    foreign_keys: ForeignKeyNames = Field(default_factory=ForeignKeyNames)
    user_models: Dict[str, str] = Field(default_factory=lambda: {"users": "user"})

    @field_validator("user_models")
    @classmethod
    def user_models_not_empty(cls, v: Dict[str, str]) -> Dict[str, str]:
        """At least one principal kind is required."""
        if not v:
            raise ValueError("user_models must map at least one relation to a principal kind")
        return v

    @property
    def principal_kinds(self) -> tuple[str, ...]:
        return tuple(self.user_models.values())

    @classmethod
    def from_env(cls, **overrides) -> "AuthzConfig":
        """Build a config from ``GATEKEEPER_*`` environment variables."""
        values = {
            "database_url": os.environ.get("GATEKEEPER_DATABASE_URL", DEFAULT_DATABASE_URL),
            "use_teams": os.environ.get("GATEKEEPER_USE_TEAMS") == "1",
            "use_modules": os.environ.get("GATEKEEPER_USE_MODULES") == "1",
            "use_cache": os.environ.get("GATEKEEPER_USE_CACHE", "1") != "0",
            "cache_ttl": int(os.environ.get("GATEKEEPER_CACHE_TTL", "60")),
            "teams_strict_check": os.environ.get("GATEKEEPER_TEAMS_STRICT") == "1",
        }
        values.update(overrides)
        return cls(**values)
