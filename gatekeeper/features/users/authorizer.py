"""
Authorization checks for one principal.

A ``PrincipalAuthorizer`` answers role, permission and module checks for a
principal and grants or revokes its associations. Effective permissions are
composed at check time from per-entity caches:

    own permissions
    ∪ permissions of own roles (and of the modules attached to those roles)
    ∪ permissions of own modules

Team policy:
    team=None           any team, or global rows only with teams_strict_check
    team=<team ref>     only rows stamped with that team
    team=ANY_TEAM       every row, whatever the strict setting
"""
from collections.abc import Iterable, Mapping
from typing import Any, Callable, FrozenSet, List, Optional, Union

from gatekeeper.core.cache import AuthzCache, cache_key
from gatekeeper.core.config import AuthzConfig
from gatekeeper.core.exceptions import FeatureDisabledError, InvalidArgumentError
from gatekeeper.core.matching import Names, check_names, get_id_for, names_match, split_names
from gatekeeper.core.store import AssociationStore
from gatekeeper.core.types import ANY_TEAM, Assignment, EntityKind, PrincipalRef, SyncResult, TeamFilter
from gatekeeper.features.permissions.resolvers import ModuleResolver, RoleResolver, invalidate_owner
from gatekeeper.features.users.schemas import AbilityChecks, AbilityResult, ReturnType
from gatekeeper.utils import get_logger


log = get_logger(__name__)


class PrincipalAuthorizer:
    """
    Checks and grants for one principal.

    Usage:
        user = gatekeeper.user(current_user)
        user.attach_role(admin, team="acme")
        if user.can("posts.delete", team="acme"):
            ...
    """

    def __init__(self, principal: PrincipalRef, config: AuthzConfig, store: AssociationStore, cache: AuthzCache):
        self.principal = principal
        self.config = config
        self.store = store
        self.cache = cache

    @property
    def id(self) -> str:
        return self.principal.id

    def __repr__(self) -> str:
        return f"<PrincipalAuthorizer(kind={self.principal.kind!r}, id={self.principal.id!r})>"

    # ========================================================================
    # Team scoping
    # ========================================================================

    def _team_id(self, team: Any) -> int:
        if isinstance(team, str) and not team.strip().isdigit():
            return self.store.resolve_team(team)
        return get_id_for(team)

    def _check_scope(self, team: Any) -> TeamFilter:
        """Team filter applied to checks."""
        if not self.config.use_teams or team is ANY_TEAM:
            return ANY_TEAM
        if team is None:
            return None if self.config.teams_strict_check else ANY_TEAM
        return self._team_id(team)

    def _write_scope(self, team: Any) -> Optional[int]:
        """Team id stamped on new rows."""
        if not self.config.use_teams:
            if team is not None:
                log.debug(f"Teams are disabled, ignoring team {team!r} for {self.principal.token}")
            return None
        if team is ANY_TEAM:
            raise InvalidArgumentError("ANY_TEAM can only be used for checks, not for grants")
        if team is None:
            return None
        return self._team_id(team)

    def _require_modules(self) -> None:
        if not self.config.use_modules:
            raise FeatureDisabledError("modules")

    # ========================================================================
    # Cached associations
    # ========================================================================

    def _cached(self, target_kind: EntityKind, scope: TeamFilter) -> FrozenSet[Assignment]:
        return self.cache.get_or_load(
            cache_key(self.principal, target_kind, scope),
            self.config.cache_ttl,
            lambda: self.store.list_associated(self.principal, target_kind, scope),
        )

    def cached_roles(self, team: Any = None) -> FrozenSet[Assignment]:
        return self._cached(EntityKind.ROLE, self._check_scope(team))

    def cached_permissions(self, team: Any = None) -> FrozenSet[Assignment]:
        """Permissions granted directly to the principal."""
        return self._cached(EntityKind.PERMISSION, self._check_scope(team))

    def cached_modules(self, team: Any = None) -> FrozenSet[Assignment]:
        """Modules granted directly to the principal."""
        self._require_modules()
        return self._cached(EntityKind.MODULE, self._check_scope(team))

    def roles(self, team: Any = None) -> List[Assignment]:
        """Roles held in the team scope, ordered by name."""
        return sorted(self.cached_roles(team), key=lambda role: (role.name, role.team_id or 0))

    def role_names(self, team: Any = None) -> FrozenSet[str]:
        return frozenset(role.name for role in self.cached_roles(team))

    def _role(self, role: Assignment) -> RoleResolver:
        return RoleResolver(role, self.config, self.store, self.cache)

    def _module(self, module: Assignment) -> ModuleResolver:
        return ModuleResolver(module, self.config, self.store, self.cache)

    # ========================================================================
    # Checks
    # ========================================================================

    def _role_check(self, scope: TeamFilter) -> Callable[[str], bool]:
        def check(name: str) -> bool:
            return any(names_match(name, role.name) for role in self._cached(EntityKind.ROLE, scope))
        return check

    def _permission_check(self, scope: TeamFilter) -> Callable[[str], bool]:
        def check(name: str) -> bool:
            if any(names_match(name, perm.name) for perm in self._cached(EntityKind.PERMISSION, scope)):
                return True
            for role in self._cached(EntityKind.ROLE, scope):
                if self._role(role)._has_one_permission(name):
                    return True
            if self.config.use_modules:
                for module in self._cached(EntityKind.MODULE, scope):
                    if self._module(module)._has_one_permission(name):
                        return True
            return False
        return check

    def _module_check(self, scope: TeamFilter) -> Callable[[str], bool]:
        def check(name: str) -> bool:
            if any(names_match(name, module.name) for module in self._cached(EntityKind.MODULE, scope)):
                return True
            return any(
                self._role(role)._has_one_module(name)
                for role in self._cached(EntityKind.ROLE, scope)
            )
        return check

    def has_role(self, name: Names, team: Any = None, require_all: bool = False) -> bool:
        """Check one role name or a list of role names."""
        result = check_names(name, self._role_check(self._check_scope(team)), require_all)
        log.debug(f"has_role({name!r}, team={team!r}) for {self.principal.token}: {result}")
        return result

    def has_permission(self, permission: Names, team: Any = None, require_all: bool = False) -> bool:
        """
        Check one permission name or a list of names against the principal's
        effective permissions.
        """
        result = check_names(permission, self._permission_check(self._check_scope(team)), require_all)
        log.debug(f"has_permission({permission!r}, team={team!r}) for {self.principal.token}: {result}")
        return result

    def can(self, permission: Names, team: Any = None, require_all: bool = False) -> bool:
        return self.has_permission(permission, team, require_all)

    def is_able_to(self, permission: Names, team: Any = None, require_all: bool = False) -> bool:
        return self.has_permission(permission, team, require_all)

    def has_module(self, module: Names, team: Any = None, require_all: bool = False) -> bool:
        """Check modules held directly or through a role."""
        self._require_modules()
        return check_names(module, self._module_check(self._check_scope(team)), require_all)

    def ability(
        self,
        roles: Names,
        permissions: Names,
        team: Any = None,
        *,
        validate_all: bool = False,
        return_type: Union[ReturnType, str] = ReturnType.BOOLEAN,
        pairwise: bool = False,
    ) -> Union[bool, AbilityChecks, AbilityResult]:
        """
        Check roles and permissions in one call.

        ``roles`` and ``permissions`` are lists or comma separated strings.
        By default the decision is ALL (``validate_all``) or ANY across every
        role and permission check. With ``pairwise`` the i-th role and the
        i-th permission must both hold, and ALL/ANY applies across the pairs.

        Raises:
            InvalidArgumentError: unknown ``return_type``, non-boolean
                ``validate_all``, both lists empty, or lists of different
                lengths in pairwise mode
        """
        if not isinstance(validate_all, bool):
            raise InvalidArgumentError("validate_all must be a boolean")
        try:
            return_type = ReturnType(return_type)
        except ValueError:
            raise InvalidArgumentError(
                f"return_type must be one of {[t.value for t in ReturnType]}, got {return_type!r}"
            ) from None

        role_names = split_names(roles)
        permission_names = split_names(permissions)
        if not role_names and not permission_names:
            raise InvalidArgumentError("ability() needs at least one role or permission")
        if pairwise and len(role_names) != len(permission_names):
            raise InvalidArgumentError(
                f"Pairwise ability() needs as many roles as permissions "
                f"({len(role_names)} != {len(permission_names)})"
            )

        scope = self._check_scope(team)
        role_check = self._role_check(scope)
        permission_check = self._permission_check(scope)
        checked_roles = [role_check(name) for name in role_names]
        checked_permissions = [permission_check(name) for name in permission_names]

        if pairwise:
            pairs = [r and p for r, p in zip(checked_roles, checked_permissions)]
            allowed = all(pairs) if validate_all else any(pairs)
        elif validate_all:
            allowed = all(checked_roles) and all(checked_permissions)
        else:
            allowed = any(checked_roles) or any(checked_permissions)

        if return_type is ReturnType.BOOLEAN:
            return allowed
        if return_type is ReturnType.ARRAY:
            return AbilityChecks(roles=checked_roles, permissions=checked_permissions)
        return AbilityResult(allowed=allowed, roles=checked_roles, permissions=checked_permissions)

    def all_permissions(self, team: Any = None) -> FrozenSet[str]:
        """Names of every permission the principal holds, directly or not."""
        scope = self._check_scope(team)
        names = {perm.name for perm in self._cached(EntityKind.PERMISSION, scope)}
        for role in self._cached(EntityKind.ROLE, scope):
            names.update(self._role(role).all_permissions())
        if self.config.use_modules:
            for module in self._cached(EntityKind.MODULE, scope):
                names.update(perm.name for perm in self._module(module).cached_permissions())
        return frozenset(names)

    # ========================================================================
    # Ownership
    # ========================================================================

    def owns(self, thing: Any, foreign_key_name: Optional[str] = None) -> bool:
        """
        Check the principal owns ``thing``.

        ``thing.owner_key(authorizer)`` is used when defined, otherwise the
        ``foreign_key_name`` attribute (or mapping key, ``user_id`` by default)
        is compared with the principal id.
        """
        owner_key = getattr(thing, "owner_key", None)
        if callable(owner_key):
            value = owner_key(self)
        else:
            foreign_key_name = foreign_key_name or "user_id"
            if isinstance(thing, Mapping):
                value = thing.get(foreign_key_name)
            else:
                value = getattr(thing, foreign_key_name, None)
        return value is not None and str(value) == self.principal.id

    def has_role_and_owns(
        self,
        role: Names,
        thing: Any,
        *,
        team: Any = None,
        require_all: bool = False,
        foreign_key_name: Optional[str] = None,
    ) -> bool:
        return self.has_role(role, team, require_all) and self.owns(thing, foreign_key_name)

    def can_and_owns(
        self,
        permission: Names,
        thing: Any,
        *,
        team: Any = None,
        require_all: bool = False,
        foreign_key_name: Optional[str] = None,
    ) -> bool:
        return self.has_permission(permission, team, require_all) and self.owns(thing, foreign_key_name)

    def has_module_and_owns(
        self,
        module: Names,
        thing: Any,
        *,
        team: Any = None,
        require_all: bool = False,
        foreign_key_name: Optional[str] = None,
    ) -> bool:
        return self.has_module(module, team, require_all) and self.owns(thing, foreign_key_name)

    # ========================================================================
    # Grants
    # ========================================================================

    def _attach(self, kind: EntityKind, thing: Any, team: Any) -> bool:
        target_id = get_id_for(thing)
        team_id = self._write_scope(team)
        changed = self.store.attach(self.principal, kind, target_id, team_id)
        self.flush_cache()
        if changed:
            log.info(f"Granted {kind.value} {target_id} to {self.principal.token} (team={team_id})")
        return changed

    def _detach(self, kind: EntityKind, thing: Any, team: Any) -> bool:
        target_id = get_id_for(thing)
        team_id = self._write_scope(team)
        changed = self.store.detach(self.principal, kind, target_id, team_id)
        self.flush_cache()
        if changed:
            log.info(f"Revoked {kind.value} {target_id} from {self.principal.token} (team={team_id})")
        return changed

    def _attach_many(self, kind: EntityKind, things: Iterable[Any], team: Any) -> SyncResult:
        ids = [get_id_for(thing) for thing in things]
        team = self._write_scope(team)
        attached = [target_id for target_id in ids if self._attach(kind, target_id, team)]
        return SyncResult(attached=tuple(attached))

    def _detach_many(self, kind: EntityKind, things: Optional[Iterable[Any]], team: Any) -> SyncResult:
        team = self._write_scope(team)
        if things is None:
            things = self.store.list_associated(self.principal, kind, team)
        ids = [get_id_for(thing) for thing in things]
        detached = [target_id for target_id in ids if self._detach(kind, target_id, team)]
        return SyncResult(detached=tuple(detached))

    def _sync(self, kind: EntityKind, things: Iterable[Any], team: Any, detaching: bool) -> SyncResult:
        ids = [get_id_for(thing) for thing in things]
        team_id = self._write_scope(team)
        result = self.store.sync(self.principal, kind, ids, team_id, detaching=detaching)
        self.flush_cache()
        if result.changed:
            log.info(
                f"Synced {kind.value}s of {self.principal.token} (team={team_id}): "
                f"attached={list(result.attached)} detached={list(result.detached)}"
            )
        return result

    def attach_role(self, role: Any, team: Any = None) -> bool:
        return self._attach(EntityKind.ROLE, role, team)

    def detach_role(self, role: Any, team: Any = None) -> bool:
        return self._detach(EntityKind.ROLE, role, team)

    def attach_roles(self, roles: Iterable[Any], team: Any = None) -> SyncResult:
        return self._attach_many(EntityKind.ROLE, roles, team)

    def detach_roles(self, roles: Optional[Iterable[Any]] = None, team: Any = None) -> SyncResult:
        """Detach ``roles``, or every role in the team scope when None."""
        return self._detach_many(EntityKind.ROLE, roles, team)

    def sync_roles(self, roles: Iterable[Any], team: Any = None, detaching: bool = True) -> SyncResult:
        """Replace the roles held in one team scope."""
        return self._sync(EntityKind.ROLE, roles, team, detaching)

    def attach_permission(self, permission: Any, team: Any = None) -> bool:
        return self._attach(EntityKind.PERMISSION, permission, team)

    def detach_permission(self, permission: Any, team: Any = None) -> bool:
        return self._detach(EntityKind.PERMISSION, permission, team)

    def attach_permissions(self, permissions: Iterable[Any], team: Any = None) -> SyncResult:
        return self._attach_many(EntityKind.PERMISSION, permissions, team)

    def detach_permissions(self, permissions: Optional[Iterable[Any]] = None, team: Any = None) -> SyncResult:
        return self._detach_many(EntityKind.PERMISSION, permissions, team)

    def sync_permissions(self, permissions: Iterable[Any], team: Any = None, detaching: bool = True) -> SyncResult:
        return self._sync(EntityKind.PERMISSION, permissions, team, detaching)

    def attach_module(self, module: Any, team: Any = None) -> bool:
        self._require_modules()
        return self._attach(EntityKind.MODULE, module, team)

    def detach_module(self, module: Any, team: Any = None) -> bool:
        self._require_modules()
        return self._detach(EntityKind.MODULE, module, team)

    def attach_modules(self, modules: Iterable[Any], team: Any = None) -> SyncResult:
        self._require_modules()
        return self._attach_many(EntityKind.MODULE, modules, team)

    def detach_modules(self, modules: Optional[Iterable[Any]] = None, team: Any = None) -> SyncResult:
        self._require_modules()
        return self._detach_many(EntityKind.MODULE, modules, team)

    def sync_modules(self, modules: Iterable[Any], team: Any = None, detaching: bool = True) -> SyncResult:
        self._require_modules()
        return self._sync(EntityKind.MODULE, modules, team, detaching)

    def flush_cache(self) -> None:
        invalidate_owner(self.cache, self.principal)
