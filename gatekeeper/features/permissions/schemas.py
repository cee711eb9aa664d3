"""
Pydantic schemas for roles, permissions, modules and teams.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Shared Schemas
# ============================================================================

class EntityBase(BaseModel):
    """Fields shared by every named entity."""
    name: str = Field(..., min_length=1, max_length=255, description="Unique name")
    display_name: Optional[str] = Field(None, max_length=255, description="Human readable name")
    description: Optional[str] = Field(None, max_length=1000)


class EntityUpdate(BaseModel):
    """Schema for updating a role, permission, module or team."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    display_name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)


class EntityResponse(EntityBase):
    """Schema for entity responses."""
    id: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Create Schemas
# ============================================================================

class PermissionCreate(EntityBase):
    """Schema for creating a new permission."""

    @field_validator("name")
    @classmethod
    def name_format(cls, v: str) -> str:
        """Permission names may use dots, colons, dashes and ``*`` wildcards."""
        if not v.replace("_", "").replace(".", "").replace(":", "").replace("-", "").replace("*", "").isalnum():
            raise ValueError(
                "Permission name must contain only alphanumeric characters, underscores, "
                "dots, colons, dashes and '*'"
            )
        return v


class RoleCreate(EntityBase):
    """Schema for creating a new role."""

    @field_validator("name")
    @classmethod
    def name_alphanumeric_underscore(cls, v: str) -> str:
        """Validate role name format."""
        if not v.replace("_", "").replace("-", "").isalnum():
            raise ValueError("Role name must contain only alphanumeric characters, underscores, and hyphens")
        return v


class ModuleCreate(RoleCreate):
    """Schema for creating a new module."""


class TeamCreate(EntityBase):
    """Schema for creating a new team."""
