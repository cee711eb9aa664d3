"""
Composition root.

``Gatekeeper`` owns the configuration, the association store and the cache,
and hands out resolvers and principal authorizers built from them.

Usage:
    config = AuthzConfig.from_env(use_teams=True)
    gatekeeper = Gatekeeper.from_config(config)
    gatekeeper.init_db()

    admin = gatekeeper.entities.create_role("admin")
    user = gatekeeper.user(current_user)
    user.attach_role(admin)
    user.has_role("admin")
"""
from collections.abc import Mapping
from typing import Any, Callable, Dict, Optional

from sqlalchemy import Engine

from gatekeeper.core.cache import AuthzCache, create_cache
from gatekeeper.core.config import AuthzConfig
from gatekeeper.core.database.engine import create_db_engine, create_session_factory, drop_db, init_db
from gatekeeper.core.exceptions import InvalidArgumentError, InvalidInputError
from gatekeeper.core.store import AssociationStore
from gatekeeper.core.types import EntityKind, PrincipalRef
from gatekeeper.features.permissions.models import AssociationSchema
from gatekeeper.features.permissions.resolvers import (
    EntityResolver,
    ModuleResolver,
    PermissionResolver,
    RoleResolver,
    TeamResolver,
)
from gatekeeper.features.permissions.service import EntityService
from gatekeeper.features.permissions.store import SqlAlchemyAssociationStore
from gatekeeper.features.users.authorizer import PrincipalAuthorizer
from gatekeeper.utils import get_logger


log = get_logger(__name__)

PrincipalFactory = Callable[[str], PrincipalAuthorizer]

RESOLVERS = {
    EntityKind.ROLE: RoleResolver,
    EntityKind.PERMISSION: PermissionResolver,
    EntityKind.MODULE: ModuleResolver,
    EntityKind.TEAM: TeamResolver,
}


def principal_id_for(principal: Any) -> str:
    """Resolve a principal object, mapping or raw id to its id."""
    if isinstance(principal, bool) or principal is None:
        raise InvalidInputError(f"Cannot resolve a principal id from {principal!r}")
    if isinstance(principal, (int, str)):
        return str(principal)
    if isinstance(principal, Mapping):
        if "id" not in principal:
            raise InvalidInputError("Mapping principals need an 'id' key")
        return principal_id_for(principal["id"])
    if hasattr(principal, "id"):
        return principal_id_for(principal.id)
    raise InvalidInputError(f"Cannot resolve a principal id from {type(principal).__name__}")


class Gatekeeper:
    """Entry point to the authorization core."""

    def __init__(self, config: AuthzConfig, store: AssociationStore, cache: Optional[AuthzCache] = None):
        self.config = config
        self.store = store
        self.cache = cache if cache is not None else create_cache(config.use_cache)
        self.engine: Optional[Engine] = None
        self.schema: Optional[AssociationSchema] = None
        self.entities: Optional[EntityService] = None

        self._principal_factories: Dict[str, PrincipalFactory] = {}
        for kind in config.principal_kinds:
            self.register_principal_kind(kind)

        log.info(
            f"Gatekeeper initialized (teams={config.use_teams}, modules={config.use_modules}, "
            f"cache={config.use_cache}, ttl={config.cache_ttl}s)"
        )

    @classmethod
    def from_config(cls, config: AuthzConfig, engine: Optional[Engine] = None) -> "Gatekeeper":
        """Build a gatekeeper backed by the SQLAlchemy store."""
        engine = engine if engine is not None else create_db_engine(config.database_url)
        session_factory = create_session_factory(engine)
        schema = AssociationSchema(config)

        gatekeeper = cls(config, SqlAlchemyAssociationStore(session_factory, schema))
        gatekeeper.engine = engine
        gatekeeper.schema = schema
        gatekeeper.entities = EntityService(gatekeeper, session_factory)
        return gatekeeper

    def init_db(self) -> None:
        init_db(self.engine, self.schema.metadata)

    def drop_db(self) -> None:
        drop_db(self.engine, self.schema.metadata)

    # ========================================================================
    # Principals
    # ========================================================================

    @property
    def default_principal_kind(self) -> str:
        return self.config.principal_kinds[0]

    def register_principal_kind(self, kind: str, factory: Optional[PrincipalFactory] = None) -> None:
        """
        Map a principal kind to the factory building its authorizers.

        The default factory builds a plain ``PrincipalAuthorizer``.
        """
        if factory is None:
            def factory(principal_id: str, kind: str = kind) -> PrincipalAuthorizer:
                return PrincipalAuthorizer(
                    PrincipalRef(kind=kind, id=principal_id), self.config, self.store, self.cache
                )
        self._principal_factories[kind] = factory

    def principal(self, principal: Any, kind: Optional[str] = None) -> PrincipalAuthorizer:
        """
        Return the authorizer of a principal.

        ``principal`` is a ``PrincipalRef`` or, together with ``kind``, an
        object, mapping or raw id.
        """
        if isinstance(principal, PrincipalRef):
            kind, principal_id = principal.kind, principal.id
        else:
            kind = kind or self.default_principal_kind
            principal_id = principal_id_for(principal)

        factory = self._principal_factories.get(kind)
        if factory is None:
            raise InvalidArgumentError(f"Unknown principal kind: {kind!r}")
        return factory(principal_id)

    def user(self, user: Any) -> PrincipalAuthorizer:
        """Authorizer of a principal of the default kind."""
        return self.principal(user, self.default_principal_kind)

    # ========================================================================
    # Entities
    # ========================================================================

    def resolver(self, kind: EntityKind, entity: Any) -> EntityResolver:
        return RESOLVERS[EntityKind(kind)](entity, self.config, self.store, self.cache)

    def role(self, role: Any) -> RoleResolver:
        return RoleResolver(role, self.config, self.store, self.cache)

    def permission(self, permission: Any) -> PermissionResolver:
        return PermissionResolver(permission, self.config, self.store, self.cache)

    def module(self, module: Any) -> ModuleResolver:
        return ModuleResolver(module, self.config, self.store, self.cache)

    def team(self, team: Any) -> TeamResolver:
        return TeamResolver(team, self.config, self.store, self.cache)
