"""
Value types shared by the store, the cache and the resolvers.
"""
import enum
from typing import Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, field_validator


class EntityKind(str, enum.Enum):
    """Kinds of grantable entities."""
    ROLE = "role"
    PERMISSION = "permission"
    MODULE = "module"
    TEAM = "team"


class _AnyTeam:
    """Sentinel team scope matching associations of every team."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ANY_TEAM"

    def __reduce__(self):
        return (_AnyTeam, ())


ANY_TEAM = _AnyTeam()

# None selects global (team-less) rows, an int selects one team.
TeamFilter = Union[None, int, _AnyTeam]


class EntityRef(BaseModel):
    """Reference to a role, permission or module owning associations."""
    model_config = ConfigDict(frozen=True)

    kind: EntityKind
    id: int

    @property
    def token(self) -> str:
        return f"{self.kind.value}:{self.id}"


class PrincipalRef(BaseModel):
    """
    Tagged reference to a principal.

    ``kind`` is the discriminator stored in the ``user_type`` column, so several
    principal types can share the same junction tables.
    """
    model_config = ConfigDict(frozen=True)

    kind: str
    id: str

    @field_validator("id", mode="before")
    @classmethod
    def id_as_string(cls, v):
        if isinstance(v, bool):
            raise ValueError("principal id cannot be a boolean")
        return str(v)

    @property
    def token(self) -> str:
        return f"principal.{self.kind}:{self.id}"


OwnerRef = Union[EntityRef, PrincipalRef]


class Assignment(BaseModel):
    """
    Immutable snapshot of an associated entity.

    ``team_id`` is only set for principal associations stamped with a team.
    """
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    team_id: Optional[int] = None


class SyncResult(BaseModel):
    """Delta applied by a sync operation."""
    model_config = ConfigDict(frozen=True)

    attached: Tuple[int, ...] = ()
    detached: Tuple[int, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.attached or self.detached)
