"""
Pydantic schemas for principal checks.
"""
import enum
from typing import List

from pydantic import BaseModel, ConfigDict


class ReturnType(str, enum.Enum):
    """Shapes ``ability()`` can return."""
    BOOLEAN = "boolean"
    ARRAY = "array"
    BOTH = "both"


class AbilityChecks(BaseModel):
    """Per-item results of an ``ability()`` call, in request order."""
    model_config = ConfigDict(frozen=True)

    roles: List[bool]
    permissions: List[bool]


class AbilityResult(AbilityChecks):
    """Combined decision plus the per-item results."""

    allowed: bool

    def __bool__(self) -> bool:
        return self.allowed
