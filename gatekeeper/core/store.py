"""
Contract between the authorization core and its storage engine.

The core only needs to list, attach, detach and sync association rows. Any
storage engine implementing ``AssociationStore`` can back the resolvers; the
package ships a SQLAlchemy adapter in
``gatekeeper.features.permissions.store``.
"""
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import FrozenSet, List, Optional

from gatekeeper.core.types import (
    ANY_TEAM,
    Assignment,
    EntityKind,
    OwnerRef,
    SyncResult,
    TeamFilter,
)


class AssociationStore(ABC):
    """
    Many-to-many links between principals, roles, permissions and modules.

    Attaching an attached pair and detaching a missing pair are no-ops.
    Referenced ids that do not exist raise ``NotFoundError`` before anything
    is written.
    """

    @abstractmethod
    def list_associated(
        self,
        owner: OwnerRef,
        target_kind: EntityKind,
        team: TeamFilter = ANY_TEAM,
    ) -> FrozenSet[Assignment]:
        """
        Return the entities of ``target_kind`` linked to ``owner``.

        ``team`` filters principal links: ``ANY_TEAM`` keeps every row, None
        keeps global rows, an id keeps that team's rows. Ignored for entity
        owners.
        """

    @abstractmethod
    def attach(
        self,
        owner: OwnerRef,
        target_kind: EntityKind,
        target_id: int,
        team_id: Optional[int] = None,
    ) -> bool:
        """Link ``target_id`` to ``owner``. Returns False when already linked."""

    @abstractmethod
    def detach(
        self,
        owner: OwnerRef,
        target_kind: EntityKind,
        target_id: int,
        team_id: Optional[int] = None,
    ) -> bool:
        """Unlink ``target_id`` from ``owner``. Returns False when not linked."""

    @abstractmethod
    def sync(
        self,
        owner: OwnerRef,
        target_kind: EntityKind,
        target_ids: Iterable[int],
        team_id: Optional[int] = None,
        detaching: bool = True,
    ) -> SyncResult:
        """
        Make ``target_ids`` the full set of links for ``owner`` within one
        team scope. With ``detaching=False`` only missing links are added.
        """

    @abstractmethod
    def detach_everywhere(self, target_kind: EntityKind, target_id: int) -> List[OwnerRef]:
        """
        Remove every link pointing at an entity, in every junction table.
        Returns the owners whose links were removed.
        """

    @abstractmethod
    def list_owners(
        self,
        target_kind: EntityKind,
        target_id: int,
        owner_kind: Optional[EntityKind] = None,
        principal_kind: Optional[str] = None,
    ) -> List[OwnerRef]:
        """
        Reverse lookup: owners of ``owner_kind`` linked to an entity, or the
        principals of ``principal_kind`` when ``owner_kind`` is None.
        """

    @abstractmethod
    def resolve_team(self, name: str) -> int:
        """Return the id of the team called ``name``."""

    def detach_all_from(self, owner: OwnerRef, target_kind: EntityKind) -> SyncResult:
        """Remove every link of ``target_kind`` owned by ``owner``, in every team."""
        detached = []
        for assignment in self.list_associated(owner, target_kind, ANY_TEAM):
            if self.detach(owner, target_kind, assignment.id, assignment.team_id):
                detached.append(assignment.id)
        return SyncResult(detached=tuple(detached))
