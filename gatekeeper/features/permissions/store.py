"""
SQLAlchemy implementation of the association store.

Each public method runs in its own transaction. Operations are idempotent:
attaching an existing link or detaching a missing one changes nothing.
Uniqueness is checked before inserting; a row inserted concurrently between
the check and the insert is caught by the unique constraints (a partial index
for global rows on SQLite and PostgreSQL) and treated as already attached.
"""
from collections.abc import Iterable
from typing import FrozenSet, List, Optional

from sqlalchemy import and_, delete, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from gatekeeper.core.database.engine import session_scope
from gatekeeper.core.exceptions import FeatureDisabledError, InvalidArgumentError, NotFoundError
from gatekeeper.core.store import AssociationStore
from gatekeeper.core.types import (
    ANY_TEAM,
    Assignment,
    EntityKind,
    EntityRef,
    OwnerRef,
    PrincipalRef,
    SyncResult,
    TeamFilter,
)
from gatekeeper.features.permissions.models import PRINCIPAL, AssociationSchema, Link
from gatekeeper.utils import get_logger


log = get_logger(__name__)


class SqlAlchemyAssociationStore(AssociationStore):
    """
    Association store backed by the junction tables of an ``AssociationSchema``.

    Usage:
        schema = AssociationSchema(config)
        store = SqlAlchemyAssociationStore(session_factory, schema)
        store.attach(PrincipalRef(kind="user", id=7), EntityKind.ROLE, role.id)
    """

    def __init__(self, session_factory: sessionmaker[Session], schema: AssociationSchema):
        self.session_factory = session_factory
        self.schema = schema

    # ========================================================================
    # Helpers
    # ========================================================================

    def _link(self, owner_kind: Optional[EntityKind], target_kind: EntityKind) -> Link:
        try:
            return self.schema.link(owner_kind, target_kind)
        except KeyError as e:
            if EntityKind.MODULE in (owner_kind, target_kind) and not self.schema.config.use_modules:
                raise FeatureDisabledError("modules") from e
            raise InvalidArgumentError(str(e)) from e

    def _link_for(self, owner: OwnerRef, target_kind: EntityKind) -> Link:
        owner_kind = PRINCIPAL if isinstance(owner, PrincipalRef) else owner.kind
        return self._link(owner_kind, target_kind)

    @staticmethod
    def _owner_clause(link: Link, owner: OwnerRef):
        if link.is_principal:
            return and_(link.owner_column == owner.id, link.type_column == owner.kind)
        return link.owner_column == owner.id

    @staticmethod
    def _team_clause(link: Link, team: TeamFilter):
        if link.team_column is None or team is ANY_TEAM:
            return None
        if team is None:
            return link.team_column.is_(None)
        return link.team_column == team

    def _where(self, link: Link, owner: OwnerRef, team: TeamFilter):
        clauses = [self._owner_clause(link, owner)]
        team_clause = self._team_clause(link, team)
        if team_clause is not None:
            clauses.append(team_clause)
        return and_(*clauses)

    def _ensure_exists(self, session: Session, kind: EntityKind, ids: Iterable[int]) -> None:
        ids = set(ids)
        if not ids:
            return
        table = self.schema.entity_tables[kind]
        found = set(session.execute(select(table.c.id).where(table.c.id.in_(ids))).scalars())
        missing = sorted(ids - found)
        if missing:
            raise NotFoundError(kind.value, missing[0])

    def _row_values(self, link: Link, owner: OwnerRef, target_id: int, team_id: Optional[int]) -> dict:
        values = {link.owner_column.name: owner.id, link.target_column.name: target_id}
        if link.is_principal:
            values[link.type_column.name] = owner.kind
        if link.team_column is not None:
            values[link.team_column.name] = team_id
        return values

    @staticmethod
    def _link_exists(session: Session, link: Link, where) -> bool:
        return session.execute(select(link.target_column).where(where).limit(1)).first() is not None

    def _check_team(self, session: Session, link: Link, team_id: Optional[int]) -> Optional[int]:
        if link.team_column is None:
            return None
        if team_id is not None:
            self._ensure_exists(session, EntityKind.TEAM, [team_id])
        return team_id

    # ========================================================================
    # AssociationStore
    # ========================================================================

    def list_associated(
        self,
        owner: OwnerRef,
        target_kind: EntityKind,
        team: TeamFilter = ANY_TEAM,
    ) -> FrozenSet[Assignment]:
        link = self._link_for(owner, target_kind)
        entity = self.schema.entity_tables[target_kind]
        team_column = link.team_column

        columns = [entity.c.id, entity.c.name, entity.c.display_name, entity.c.description]
        if team_column is not None:
            columns.append(team_column)

        stmt = (
            select(*columns)
            .select_from(link.table.join(entity, link.target_column == entity.c.id))
            .where(self._where(link, owner, team))
        )
        with session_scope(self.session_factory) as session:
            rows = session.execute(stmt).all()

        return frozenset(
            Assignment(
                id=row[0],
                name=row[1],
                display_name=row[2],
                description=row[3],
                team_id=row[4] if team_column is not None else None,
            )
            for row in rows
        )

    def attach(
        self,
        owner: OwnerRef,
        target_kind: EntityKind,
        target_id: int,
        team_id: Optional[int] = None,
    ) -> bool:
        link = self._link_for(owner, target_kind)
        try:
            with session_scope(self.session_factory) as session:
                self._ensure_exists(session, target_kind, [target_id])
                team_id = self._check_team(session, link, team_id)

                where = and_(self._where(link, owner, team_id), link.target_column == target_id)
                if self._link_exists(session, link, where):
                    return False

                session.execute(insert(link.table).values(**self._row_values(link, owner, target_id, team_id)))
        except IntegrityError:
            # a concurrent attach inserted the same row between the check and the insert
            with session_scope(self.session_factory) as session:
                if not self._link_exists(session, link, where):
                    raise
            log.debug(f"{target_kind.value} {target_id} already attached to {owner.token} (team={team_id})")
            return False

        log.debug(f"Attached {target_kind.value} {target_id} to {owner.token} (team={team_id})")
        return True

    def detach(
        self,
        owner: OwnerRef,
        target_kind: EntityKind,
        target_id: int,
        team_id: Optional[int] = None,
    ) -> bool:
        link = self._link_for(owner, target_kind)
        if link.team_column is None:
            team_id = None
        where = and_(self._where(link, owner, team_id), link.target_column == target_id)
        with session_scope(self.session_factory) as session:
            result = session.execute(delete(link.table).where(where))

        return result.rowcount > 0

    def sync(
        self,
        owner: OwnerRef,
        target_kind: EntityKind,
        target_ids: Iterable[int],
        team_id: Optional[int] = None,
        detaching: bool = True,
    ) -> SyncResult:
        link = self._link_for(owner, target_kind)
        wanted = list(dict.fromkeys(target_ids))
        try:
            result = self._sync_once(link, owner, target_kind, wanted, team_id, detaching)
        except IntegrityError:
            # a concurrent write added one of the rows; the second pass sees it
            log.debug(f"Retrying sync of {target_kind.value} links of {owner.token} (team={team_id})")
            result = self._sync_once(link, owner, target_kind, wanted, team_id, detaching)

        if result.changed:
            log.debug(
                f"Synced {target_kind.value} links of {owner.token} (team={team_id}): "
                f"+{list(result.attached)} -{list(result.detached)}"
            )
        return result

    def _sync_once(
        self,
        link: Link,
        owner: OwnerRef,
        target_kind: EntityKind,
        wanted: List[int],
        team_id: Optional[int],
        detaching: bool,
    ) -> SyncResult:
        with session_scope(self.session_factory) as session:
            self._ensure_exists(session, target_kind, wanted)
            team_id = self._check_team(session, link, team_id)

            scope = self._where(link, owner, team_id)
            current = list(session.execute(select(link.target_column).where(scope)).scalars())

            to_attach = [target_id for target_id in wanted if target_id not in current]
            to_detach = [target_id for target_id in current if target_id not in wanted] if detaching else []

            if to_detach:
                session.execute(
                    delete(link.table).where(and_(scope, link.target_column.in_(to_detach)))
                )
            if to_attach:
                session.execute(
                    insert(link.table),
                    [self._row_values(link, owner, target_id, team_id) for target_id in to_attach],
                )

        return SyncResult(attached=tuple(to_attach), detached=tuple(to_detach))

    def detach_everywhere(self, target_kind: EntityKind, target_id: int) -> List[OwnerRef]:
        affected: dict[str, OwnerRef] = {}
        with session_scope(self.session_factory) as session:
            if target_kind == EntityKind.TEAM:
                links = [link for link in self.schema.links.values() if link.team_column is not None]
                for link in links:
                    where = link.team_column == target_id
                    for ref in self._owners(session, link, where):
                        affected[ref.token] = ref
                    session.execute(delete(link.table).where(where))
            else:
                for link in self.schema.links_to(target_kind):
                    where = link.target_column == target_id
                    for ref in self._owners(session, link, where):
                        affected[ref.token] = ref
                    session.execute(delete(link.table).where(where))
                for link in self.schema.links_from(target_kind):
                    session.execute(delete(link.table).where(link.owner_column == target_id))

        return list(affected.values())

    def _owners(self, session: Session, link: Link, where) -> List[OwnerRef]:
        if link.is_principal:
            rows = session.execute(
                select(link.type_column, link.owner_column).where(where).distinct()
            ).all()
            return [PrincipalRef(kind=kind, id=owner_id) for kind, owner_id in rows]
        ids = session.execute(select(link.owner_column).where(where).distinct()).scalars()
        return [EntityRef(kind=link.owner_kind, id=owner_id) for owner_id in ids]

    def list_owners(
        self,
        target_kind: EntityKind,
        target_id: int,
        owner_kind: Optional[EntityKind] = None,
        principal_kind: Optional[str] = None,
    ) -> List[OwnerRef]:
        link = self._link(owner_kind, target_kind)
        where = link.target_column == target_id
        if link.is_principal and principal_kind is not None:
            where = and_(where, link.type_column == principal_kind)
        with session_scope(self.session_factory) as session:
            owners = self._owners(session, link, where)
        return sorted(owners, key=lambda ref: ref.token)

    def resolve_team(self, name: str) -> int:
        if EntityKind.TEAM not in self.schema.entity_tables:
            raise FeatureDisabledError("teams")
        table = self.schema.entity_tables[EntityKind.TEAM]
        with session_scope(self.session_factory) as session:
            team_id = session.execute(select(table.c.id).where(table.c.name == name)).scalar_one_or_none()
        if team_id is None:
            raise NotFoundError("team", name)
        return team_id
