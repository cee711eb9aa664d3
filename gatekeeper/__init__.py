"""
Gatekeeper: role, permission and module based authorization.

Usage:
    from gatekeeper import AuthzConfig, Gatekeeper

    gatekeeper = Gatekeeper.from_config(AuthzConfig(use_teams=True, use_modules=True))
    gatekeeper.init_db()

    editor = gatekeeper.entities.create_role("editor")
    posts = gatekeeper.entities.create_permission("posts.*")
    gatekeeper.role(editor).attach_permission(posts)

    user = gatekeeper.user(current_user)
    user.attach_role(editor)
    user.can("posts.update")  # True
"""
from gatekeeper.core.cache import AuthzCache, NullCache, cache_key
from gatekeeper.core.config import AuthzConfig, ForeignKeyNames, TableNames
from gatekeeper.core.exceptions import (
    ConflictError,
    FeatureDisabledError,
    GatekeeperError,
    InvalidArgumentError,
    InvalidInputError,
    NotFoundError,
)
from gatekeeper.core.store import AssociationStore
from gatekeeper.core.types import ANY_TEAM, Assignment, EntityKind, EntityRef, PrincipalRef, SyncResult
from gatekeeper.features.permissions.resolvers import (
    ModuleResolver,
    PermissionResolver,
    RoleResolver,
    TeamResolver,
)
from gatekeeper.features.users.authorizer import PrincipalAuthorizer
from gatekeeper.features.users.schemas import AbilityChecks, AbilityResult, ReturnType
from gatekeeper.main import Gatekeeper

__all__ = [
    "ANY_TEAM",
    "AbilityChecks",
    "AbilityResult",
    "Assignment",
    "AssociationStore",
    "AuthzCache",
    "AuthzConfig",
    "ConflictError",
    "EntityKind",
    "EntityRef",
    "FeatureDisabledError",
    "ForeignKeyNames",
    "Gatekeeper",
    "GatekeeperError",
    "InvalidArgumentError",
    "InvalidInputError",
    "ModuleResolver",
    "NotFoundError",
    "NullCache",
    "PermissionResolver",
    "PrincipalAuthorizer",
    "PrincipalRef",
    "ReturnType",
    "RoleResolver",
    "SyncResult",
    "TableNames",
    "TeamResolver",
    "cache_key",
]
