"""
Role, Module and Permission resolvers.

A resolver wraps one entity with the association store and the cache: it
answers cached queries about the entity's associations and mutates them,
flushing the entity's cache entries before every mutating call returns.

Lifecycle hooks (``before_delete``, ``after_save``, ``after_delete``,
``after_restore``) are called explicitly by the entity service.
"""
from collections.abc import Iterable
from typing import Any, FrozenSet, List, Optional

from gatekeeper.core.cache import KEY_PREFIX, AuthzCache, cache_key
from gatekeeper.core.config import AuthzConfig
from gatekeeper.core.exceptions import FeatureDisabledError, InvalidArgumentError
from gatekeeper.core.matching import Names, check_names, get_id_for, names_match
from gatekeeper.core.store import AssociationStore
from gatekeeper.core.types import Assignment, EntityKind, EntityRef, OwnerRef, SyncResult
from gatekeeper.utils import get_logger


log = get_logger(__name__)


def invalidate_owner(cache: AuthzCache, owner: OwnerRef) -> None:
    """Drop every cached association set of ``owner``, in every team scope."""
    cache.invalidate_prefix(f"{KEY_PREFIX}:{owner.token}")


class EntityResolver:
    """Shared plumbing for the entity resolvers."""

    kind: EntityKind

    def __init__(self, entity: Any, config: AuthzConfig, store: AssociationStore, cache: AuthzCache):
        self.ref = EntityRef(kind=self.kind, id=get_id_for(entity))
        self.config = config
        self.store = store
        self.cache = cache

    @property
    def id(self) -> int:
        return self.ref.id

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(id={self.id})>"

    def _resolver(self, cls, entity):
        return cls(entity, self.config, self.store, self.cache)

    def _require_modules(self) -> None:
        if not self.config.use_modules:
            raise FeatureDisabledError("modules")

    def _cached(self, target_kind: EntityKind) -> FrozenSet[Assignment]:
        return self.cache.get_or_load(
            cache_key(self.ref, target_kind),
            self.config.cache_ttl,
            lambda: self.store.list_associated(self.ref, target_kind),
        )

    # ========================================================================
    # Mutations
    # ========================================================================

    def _attach(self, target_kind: EntityKind, thing: Any) -> bool:
        target_id = get_id_for(thing)
        changed = self.store.attach(self.ref, target_kind, target_id)
        self.flush_cache()
        if changed:
            log.info(f"Attached {target_kind.value} {target_id} to {self.ref.token}")
        return changed

    def _detach(self, target_kind: EntityKind, thing: Any) -> bool:
        target_id = get_id_for(thing)
        changed = self.store.detach(self.ref, target_kind, target_id)
        self.flush_cache()
        if changed:
            log.info(f"Detached {target_kind.value} {target_id} from {self.ref.token}")
        return changed

    def _attach_many(self, target_kind: EntityKind, things: Iterable[Any]) -> SyncResult:
        ids = [get_id_for(thing) for thing in things]
        attached = [target_id for target_id in ids if self._attach(target_kind, target_id)]
        return SyncResult(attached=tuple(attached))

    def _detach_many(self, target_kind: EntityKind, things: Optional[Iterable[Any]]) -> SyncResult:
        if things is None:
            things = self.store.list_associated(self.ref, target_kind)
        ids = [get_id_for(thing) for thing in things]
        detached = [target_id for target_id in ids if self._detach(target_kind, target_id)]
        return SyncResult(detached=tuple(detached))

    def _sync(self, target_kind: EntityKind, things: Iterable[Any], detaching: bool = True) -> SyncResult:
        ids = [get_id_for(thing) for thing in things]
        result = self.store.sync(self.ref, target_kind, ids, detaching=detaching)
        self.flush_cache()
        if result.changed:
            log.info(
                f"Synced {target_kind.value}s of {self.ref.token}: "
                f"attached={list(result.attached)} detached={list(result.detached)}"
            )
        return result

    # ========================================================================
    # Relations
    # ========================================================================

    def principals(self, relation: str) -> List[OwnerRef]:
        """Principals of the kind configured for ``relation`` holding this entity."""
        try:
            principal_kind = self.config.user_models[relation]
        except KeyError:
            raise InvalidArgumentError(f"Unknown principal relation: {relation!r}") from None
        return self.store.list_owners(self.kind, self.id, principal_kind=principal_kind)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def flush_cache(self) -> None:
        invalidate_owner(self.cache, self.ref)

    def before_delete(self, soft: bool = False) -> List[OwnerRef]:
        """
        Clear every association referencing the entity.

        A soft delete keeps the associations. The caches of the owners whose
        links were removed are flushed.
        """
        if soft:
            log.debug(f"Soft delete of {self.ref.token}: associations preserved")
            return []

        owners = self.store.detach_everywhere(self.kind, self.id)
        for owner in owners:
            invalidate_owner(self.cache, owner)
        log.info(f"Cleared associations of {self.ref.token} ({len(owners)} owners affected)")
        return owners

    def after_delete(self) -> None:
        self.flush_cache()

    def after_save(self) -> None:
        self.flush_cache()

    def after_restore(self) -> None:
        self.flush_cache()


class PermissionHolderMixin:
    """Permission associations shared by roles and modules."""

    def cached_permissions(self) -> FrozenSet[Assignment]:
        """Permissions of the entity, from the cache or the store."""
        return self._cached(EntityKind.PERMISSION)

    def sync_permissions(self, permissions: Iterable[Any], detaching: bool = True) -> SyncResult:
        """Replace the permission set; an empty list removes every permission."""
        return self._sync(EntityKind.PERMISSION, permissions, detaching)

    def attach_permission(self, permission: Any) -> bool:
        return self._attach(EntityKind.PERMISSION, permission)

    def detach_permission(self, permission: Any) -> bool:
        return self._detach(EntityKind.PERMISSION, permission)

    def attach_permissions(self, permissions: Iterable[Any]) -> SyncResult:
        return self._attach_many(EntityKind.PERMISSION, permissions)

    def detach_permissions(self, permissions: Optional[Iterable[Any]] = None) -> SyncResult:
        """Detach ``permissions``, or every permission when None."""
        return self._detach_many(EntityKind.PERMISSION, permissions)


class ModuleResolver(PermissionHolderMixin, EntityResolver):
    """
    A module: a named bundle of permissions.

    Usage:
        module = gatekeeper.module(billing_module)
        module.attach_permission(invoices_read)
        module.has_permission("invoices.*")
    """
    kind = EntityKind.MODULE

    def __init__(self, entity: Any, config: AuthzConfig, store: AssociationStore, cache: AuthzCache):
        super().__init__(entity, config, store, cache)
        self._require_modules()

    def has_permission(self, permission: Names, require_all: bool = False) -> bool:
        """Check one permission name or a list of names."""
        return check_names(permission, self._has_one_permission, require_all)

    def _has_one_permission(self, name: str) -> bool:
        return any(names_match(name, perm.name) for perm in self.cached_permissions())

    def roles(self) -> List[OwnerRef]:
        return self.store.list_owners(EntityKind.MODULE, self.id, owner_kind=EntityKind.ROLE)


class RoleResolver(PermissionHolderMixin, EntityResolver):
    """
    A role: permissions plus, when modules are enabled, modules.

    A role's permission check covers its own permissions and the permissions
    of its modules.
    """
    kind = EntityKind.ROLE

    def cached_modules(self) -> FrozenSet[Assignment]:
        self._require_modules()
        return self._cached(EntityKind.MODULE)

    def has_permission(self, permission: Names, require_all: bool = False) -> bool:
        """Check one permission name or a list of names."""
        return check_names(permission, self._has_one_permission, require_all)

    def _has_one_permission(self, name: str) -> bool:
        if any(names_match(name, perm.name) for perm in self.cached_permissions()):
            return True
        if not self.config.use_modules:
            return False
        return any(
            self._resolver(ModuleResolver, module)._has_one_permission(name)
            for module in self.cached_modules()
        )

    def has_module(self, module: Names, require_all: bool = False) -> bool:
        """Check one module name or a list of names."""
        self._require_modules()
        return check_names(module, self._has_one_module, require_all)

    def _has_one_module(self, name: str) -> bool:
        return any(names_match(name, module.name) for module in self.cached_modules())

    def sync_modules(self, modules: Iterable[Any], detaching: bool = True) -> SyncResult:
        self._require_modules()
        return self._sync(EntityKind.MODULE, modules, detaching)

    def attach_module(self, module: Any) -> bool:
        self._require_modules()
        return self._attach(EntityKind.MODULE, module)

    def detach_module(self, module: Any) -> bool:
        self._require_modules()
        return self._detach(EntityKind.MODULE, module)

    def attach_modules(self, modules: Iterable[Any]) -> SyncResult:
        self._require_modules()
        return self._attach_many(EntityKind.MODULE, modules)

    def detach_modules(self, modules: Optional[Iterable[Any]] = None) -> SyncResult:
        self._require_modules()
        return self._detach_many(EntityKind.MODULE, modules)

    def all_permissions(self) -> FrozenSet[str]:
        """Names of the role's permissions, including those of its modules."""
        names = {perm.name for perm in self.cached_permissions()}
        if self.config.use_modules:
            for module in self.cached_modules():
                names.update(perm.name for perm in self._resolver(ModuleResolver, module).cached_permissions())
        return frozenset(names)


class PermissionResolver(EntityResolver):
    """
    A permission. It owns no associations; deleting it clears every role,
    module and principal link pointing at it.
    """
    kind = EntityKind.PERMISSION

    def roles(self) -> List[OwnerRef]:
        return self.store.list_owners(EntityKind.PERMISSION, self.id, owner_kind=EntityKind.ROLE)

    def modules(self) -> List[OwnerRef]:
        self._require_modules()
        return self.store.list_owners(EntityKind.PERMISSION, self.id, owner_kind=EntityKind.MODULE)


class TeamResolver(EntityResolver):
    """
    A team. Deleting it clears every principal link stamped with it.
    """
    kind = EntityKind.TEAM

    def __init__(self, entity: Any, config: AuthzConfig, store: AssociationStore, cache: AuthzCache):
        super().__init__(entity, config, store, cache)
        if not config.use_teams:
            raise FeatureDisabledError("teams")
