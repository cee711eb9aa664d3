"""
Create, update, delete and restore roles, permissions, modules and teams.

The service is the orchestrator of the entity lifecycle: it calls the
resolver hooks around every write so association cleanup and cache flushes
happen deterministically.

    delete (hard):  before_delete -> DELETE row -> after_delete
    delete (soft):  before_delete(soft=True) -> set deleted_at -> after_delete
    create/update:  write row -> after_save
    restore:        clear deleted_at -> after_restore
"""
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional, Type, Union

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from gatekeeper.core.database.base import Base, SoftDeleteMixin
from gatekeeper.core.database.engine import session_scope
from gatekeeper.core.exceptions import ConflictError, FeatureDisabledError, InvalidArgumentError, NotFoundError
from gatekeeper.core.types import EntityKind
from gatekeeper.features.permissions.models import ENTITY_MODELS, Module, Permission, Role, Team
from gatekeeper.features.permissions.schemas import (
    EntityUpdate,
    ModuleCreate,
    PermissionCreate,
    RoleCreate,
    TeamCreate,
)
from gatekeeper.utils import get_logger

if TYPE_CHECKING:
    from gatekeeper.main import Gatekeeper


log = get_logger(__name__)


CREATE_SCHEMAS: dict[EntityKind, Type[BaseModel]] = {
    EntityKind.ROLE: RoleCreate,
    EntityKind.PERMISSION: PermissionCreate,
    EntityKind.MODULE: ModuleCreate,
    EntityKind.TEAM: TeamCreate,
}


class EntityService:
    """
    Entity CRUD wired to the resolver lifecycle hooks.

    Usage:
        admin = gatekeeper.entities.create(EntityKind.ROLE, name="admin")
        gatekeeper.entities.delete(EntityKind.ROLE, admin.id)
    """

    def __init__(self, gatekeeper: "Gatekeeper", session_factory: sessionmaker[Session]):
        self.gatekeeper = gatekeeper
        self.session_factory = session_factory

    def _model(self, kind: EntityKind) -> Type[Base]:
        config = self.gatekeeper.config
        if kind == EntityKind.MODULE and not config.use_modules:
            raise FeatureDisabledError("modules")
        if kind == EntityKind.TEAM and not config.use_teams:
            raise FeatureDisabledError("teams")
        return ENTITY_MODELS[kind]

    def _load(self, session: Session, kind: EntityKind, entity_id: int):
        entity = session.get(self._model(kind), entity_id)
        if entity is None:
            raise NotFoundError(kind.value, entity_id)
        return entity

    # ========================================================================
    # Reads
    # ========================================================================

    def get(self, kind: EntityKind, entity_id: int):
        """Return an entity by id, soft-deleted ones included."""
        with session_scope(self.session_factory) as session:
            return self._load(session, kind, entity_id)

    def get_by_name(self, kind: EntityKind, name: str):
        model = self._model(kind)
        with session_scope(self.session_factory) as session:
            entity = session.execute(select(model).where(model.name == name)).scalar_one_or_none()
        if entity is None:
            raise NotFoundError(kind.value, name)
        return entity

    def list_entities(self, kind: EntityKind, with_trashed: bool = False) -> list:
        model = self._model(kind)
        stmt = select(model).order_by(model.id)
        if not with_trashed and issubclass(model, SoftDeleteMixin):
            stmt = stmt.where(model.deleted_at.is_(None))
        with session_scope(self.session_factory) as session:
            return list(session.execute(stmt).scalars())

    # ========================================================================
    # Writes
    # ========================================================================

    def create(self, kind: EntityKind, data: Optional[BaseModel] = None, **fields):
        """
        Create an entity from a create schema or keyword fields.

        Raises:
            ConflictError: an entity of that kind already uses the name
        """
        model = self._model(kind)
        if data is None:
            data = CREATE_SCHEMAS[kind](**fields)
        try:
            with session_scope(self.session_factory) as session:
                entity = model(**data.model_dump())
                session.add(entity)
                session.flush()
                session.refresh(entity)
        except IntegrityError:
            raise ConflictError(f"{kind.value} with name {data.name!r} already exists") from None

        self.gatekeeper.resolver(kind, entity).after_save()
        log.info(f"Created {kind.value} {entity.name!r} (id={entity.id})")
        return entity

    def update(self, kind: EntityKind, entity_id: int, data: Union[EntityUpdate, None] = None, **fields):
        if data is None:
            data = EntityUpdate(**fields)
        try:
            with session_scope(self.session_factory) as session:
                entity = self._load(session, kind, entity_id)
                for field, value in data.model_dump(exclude_unset=True).items():
                    setattr(entity, field, value)
                session.flush()
                session.refresh(entity)
        except IntegrityError:
            raise ConflictError(f"{kind.value} with name {data.name!r} already exists") from None

        self.gatekeeper.resolver(kind, entity).after_save()
        return entity

    def delete(self, kind: EntityKind, entity_id: int, force: bool = False) -> None:
        """
        Delete an entity.

        Soft-deletable entities (roles, permissions, modules) keep their
        associations unless ``force`` is set. Teams are always hard-deleted.
        """
        model = self._model(kind)
        soft = issubclass(model, SoftDeleteMixin) and not force
        resolver = self.gatekeeper.resolver(kind, self.get(kind, entity_id))
        resolver.before_delete(soft=soft)

        with session_scope(self.session_factory) as session:
            entity = self._load(session, kind, entity_id)
            if soft:
                entity.deleted_at = datetime.now(timezone.utc)
            else:
                session.delete(entity)

        resolver.after_delete()
        log.info(f"{'Soft' if soft else 'Hard'} deleted {kind.value} {entity_id}")

    def restore(self, kind: EntityKind, entity_id: int):
        if not issubclass(self._model(kind), SoftDeleteMixin):
            raise InvalidArgumentError(f"{kind.value} entities cannot be soft deleted")
        with session_scope(self.session_factory) as session:
            entity = self._load(session, kind, entity_id)
            entity.deleted_at = None
            session.flush()
            session.refresh(entity)

        self.gatekeeper.resolver(kind, entity).after_restore()
        return entity

    # ========================================================================
    # Shortcuts
    # ========================================================================

    def create_role(self, name: str, **fields) -> Role:
        return self.create(EntityKind.ROLE, name=name, **fields)

    def create_permission(self, name: str, **fields) -> Permission:
        return self.create(EntityKind.PERMISSION, name=name, **fields)

    def create_module(self, name: str, **fields) -> Module:
        return self.create(EntityKind.MODULE, name=name, **fields)

    def create_team(self, name: str, **fields) -> Team:
        return self.create(EntityKind.TEAM, name=name, **fields)
