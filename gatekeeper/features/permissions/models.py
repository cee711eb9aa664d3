"""
Role, Permission, Module and Team models plus the junction tables linking them.

Entity tables are declarative models. Junction tables depend on the
configuration (table names, foreign-key column names, teams and modules on or
off) so they are built by ``AssociationSchema`` into their own MetaData,
next to copies of the entity tables they reference.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    UniqueConstraint,
)

from gatekeeper.core.config import AuthzConfig
from gatekeeper.core.database.base import Base, NamedEntityMixin, SoftDeleteMixin, TimestampMixin
from gatekeeper.core.types import EntityKind


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, NamedEntityMixin, TimestampMixin, SoftDeleteMixin):
    """
    A named, atomically checkable capability.

    Names may contain ``*`` wildcards, e.g. ``posts.*``.
    """
    __tablename__ = "permissions"

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, name={self.name!r})>"


class Role(Base, NamedEntityMixin, TimestampMixin, SoftDeleteMixin):
    """
    A named bundle of permissions and, when enabled, modules.

    Examples: admin, editor, auditor
    """
    __tablename__ = "roles"

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r})>"


class Module(Base, NamedEntityMixin, TimestampMixin, SoftDeleteMixin):
    """
    A named group of permissions usable by roles and directly by principals.
    """
    __tablename__ = "modules"

    def __repr__(self) -> str:
        return f"<Module(id={self.id}, name={self.name!r})>"


class Team(Base, NamedEntityMixin, TimestampMixin):
    """
    Tenant scope partitioning principal associations.
    """
    __tablename__ = "teams"

    def __repr__(self) -> str:
        return f"<Team(id={self.id}, name={self.name!r})>"


ENTITY_MODELS = {
    EntityKind.ROLE: Role,
    EntityKind.PERMISSION: Permission,
    EntityKind.MODULE: Module,
    EntityKind.TEAM: Team,
}

# Owner side of a link: an entity kind, or None for principals.
PRINCIPAL = None

PARTIAL_INDEX_DIALECTS = ("sqlite", "postgresql")


# ============================================================================
# Association Tables
# ============================================================================

@dataclass(frozen=True)
class Link:
    """One junction table seen from its owner side."""
    table: Table
    owner_kind: Optional[EntityKind]
    target_kind: EntityKind
    owner_column: Column
    target_column: Column
    type_column: Optional[Column] = None
    team_column: Optional[Column] = None

    @property
    def is_principal(self) -> bool:
        return self.owner_kind is PRINCIPAL


class AssociationSchema:
    """
    Tables used by the association store for one configuration.

    Usage:
        schema = AssociationSchema(config)
        init_db(engine, schema.metadata)
    """

    def __init__(self, config: AuthzConfig):
        self.config = config
        self.metadata = MetaData()
        self.entity_tables: Dict[EntityKind, Table] = {}
        self.links: Dict[Tuple[Optional[EntityKind], EntityKind], Link] = {}

        kinds = [EntityKind.ROLE, EntityKind.PERMISSION]
        if config.use_modules:
            kinds.append(EntityKind.MODULE)
        if config.use_teams:
            kinds.append(EntityKind.TEAM)
        for kind in kinds:
            source = ENTITY_MODELS[kind].__table__
            self.entity_tables[kind] = source.to_metadata(self.metadata)

        tables = config.tables
        self._principal_link(tables.role_user, EntityKind.ROLE)
        self._principal_link(tables.permission_user, EntityKind.PERMISSION)
        self._entity_link(tables.permission_role, EntityKind.ROLE, EntityKind.PERMISSION)
        if config.use_modules:
            self._principal_link(tables.module_user, EntityKind.MODULE)
            self._entity_link(tables.module_role, EntityKind.ROLE, EntityKind.MODULE)
            self._entity_link(tables.permission_module, EntityKind.MODULE, EntityKind.PERMISSION)

    def _fk_name(self, kind: EntityKind) -> str:
        return getattr(self.config.foreign_keys, kind.value)

    def _target_column(self, kind: EntityKind) -> Column:
        entity_table = self.entity_tables[kind]
        return Column(
            self._fk_name(kind),
            Integer,
            ForeignKey(entity_table.c.id, ondelete="CASCADE", onupdate="CASCADE"),
            nullable=False,
            index=True,
        )

    def _principal_link(self, name: str, target_kind: EntityKind) -> None:
        fks = self.config.foreign_keys
        user_column = Column(fks.user, String(64), nullable=False, index=True)
        type_column = Column("user_type", String(255), nullable=False)
        target_column = self._target_column(target_kind)
        columns = [user_column, type_column, target_column]

        team_column = None
        if self.config.use_teams:
            team_column = Column(
                fks.team,
                Integer,
                ForeignKey(self.entity_tables[EntityKind.TEAM].c.id, ondelete="CASCADE", onupdate="CASCADE"),
                nullable=True,
            )
            columns.append(team_column)
            constraint = UniqueConstraint(fks.user, target_column.name, "user_type", fks.team)
        else:
            constraint = PrimaryKeyConstraint(fks.user, target_column.name, "user_type")

        table = Table(name, self.metadata, *columns, constraint)
        if team_column is not None:
            # NULL team ids are distinct for the unique constraint; global rows
            # get their own partial index where the backend supports one
            Index(
                f"uq_{name}_global",
                table.c[fks.user],
                table.c[target_column.name],
                table.c.user_type,
                unique=True,
                sqlite_where=table.c[fks.team].is_(None),
                postgresql_where=table.c[fks.team].is_(None),
            ).ddl_if(dialect=PARTIAL_INDEX_DIALECTS)
        self.links[(PRINCIPAL, target_kind)] = Link(
            table=table,
            owner_kind=PRINCIPAL,
            target_kind=target_kind,
            owner_column=table.c[fks.user],
            target_column=table.c[target_column.name],
            type_column=table.c.user_type,
            team_column=table.c[fks.team] if team_column is not None else None,
        )

    def _entity_link(self, name: str, owner_kind: EntityKind, target_kind: EntityKind) -> None:
        owner_column = self._target_column(owner_kind)
        target_column = self._target_column(target_kind)
        table = Table(
            name,
            self.metadata,
            owner_column,
            target_column,
            PrimaryKeyConstraint(owner_column.name, target_column.name),
        )
        self.links[(owner_kind, target_kind)] = Link(
            table=table,
            owner_kind=owner_kind,
            target_kind=target_kind,
            owner_column=table.c[owner_column.name],
            target_column=table.c[target_column.name],
        )

    def link(self, owner_kind: Optional[EntityKind], target_kind: EntityKind) -> Link:
        try:
            return self.links[(owner_kind, target_kind)]
        except KeyError:
            owner = "principal" if owner_kind is PRINCIPAL else owner_kind.value
            raise KeyError(f"No association between {owner} and {target_kind.value}") from None

    def links_to(self, target_kind: EntityKind) -> list[Link]:
        """Every junction table with ``target_kind`` on its target side."""
        return [link for link in self.links.values() if link.target_kind == target_kind]

    def links_from(self, owner_kind: EntityKind) -> list[Link]:
        return [link for link in self.links.values() if link.owner_kind == owner_kind]
