"""
SQLAlchemy association store.
"""
import pytest
from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError

from gatekeeper.core.exceptions import FeatureDisabledError, NotFoundError
from gatekeeper.core.types import ANY_TEAM, EntityKind, EntityRef, PrincipalRef
from gatekeeper.features.permissions.store import SqlAlchemyAssociationStore


ALICE = PrincipalRef(kind="user", id=1)
BOB = PrincipalRef(kind="user", id=2)


def role_ref(role) -> EntityRef:
    return EntityRef(kind=EntityKind.ROLE, id=role.id)


class TestAttachDetach:
    """Idempotent attach and detach"""

    def test_attach_is_idempotent(self, gatekeeper):
        admin = gatekeeper.entities.create_role("admin")
        store = gatekeeper.store

        assert store.attach(ALICE, EntityKind.ROLE, admin.id) is True
        assert store.attach(ALICE, EntityKind.ROLE, admin.id) is False

        roles = store.list_associated(ALICE, EntityKind.ROLE)
        assert [role.name for role in roles] == ["admin"]

    def test_detach_missing_link_is_a_no_op(self, gatekeeper):
        admin = gatekeeper.entities.create_role("admin")
        assert gatekeeper.store.detach(ALICE, EntityKind.ROLE, admin.id) is False

    def test_detach(self, gatekeeper):
        admin = gatekeeper.entities.create_role("admin")
        store = gatekeeper.store
        store.attach(ALICE, EntityKind.ROLE, admin.id)

        assert store.detach(ALICE, EntityKind.ROLE, admin.id) is True
        assert store.list_associated(ALICE, EntityKind.ROLE) == frozenset()

    def test_principals_are_isolated(self, gatekeeper):
        admin = gatekeeper.entities.create_role("admin")
        gatekeeper.store.attach(ALICE, EntityKind.ROLE, admin.id)
        assert gatekeeper.store.list_associated(BOB, EntityKind.ROLE) == frozenset()

    def test_principal_kinds_are_isolated(self, gatekeeper):
        """Same id, different principal kind"""
        admin = gatekeeper.entities.create_role("admin")
        gatekeeper.store.attach(ALICE, EntityKind.ROLE, admin.id)
        bot = PrincipalRef(kind="bot", id=1)
        assert gatekeeper.store.list_associated(bot, EntityKind.ROLE) == frozenset()

    def test_unknown_target_raises(self, gatekeeper):
        with pytest.raises(NotFoundError):
            gatekeeper.store.attach(ALICE, EntityKind.ROLE, 999)

    def test_entity_owner(self, gatekeeper):
        admin = gatekeeper.entities.create_role("admin")
        read = gatekeeper.entities.create_permission("posts.read")
        store = gatekeeper.store

        store.attach(role_ref(admin), EntityKind.PERMISSION, read.id)
        permissions = store.list_associated(role_ref(admin), EntityKind.PERMISSION)
        assert {perm.name for perm in permissions} == {"posts.read"}

    def test_modules_disabled(self, gatekeeper):
        with pytest.raises(FeatureDisabledError):
            gatekeeper.store.list_associated(ALICE, EntityKind.MODULE)


class TestSync:
    """Sync computes and applies the minimal delta"""

    def test_sync_delta(self, gatekeeper):
        entities = gatekeeper.entities
        a, b, c = (entities.create_permission(name) for name in ("a.read", "b.read", "c.read"))
        admin = role_ref(entities.create_role("admin"))
        store = gatekeeper.store

        first = store.sync(admin, EntityKind.PERMISSION, [a.id, b.id])
        assert first.attached == (a.id, b.id)
        assert first.detached == ()

        second = store.sync(admin, EntityKind.PERMISSION, [b.id, c.id])
        assert second.attached == (c.id,)
        assert second.detached == (a.id,)

        third = store.sync(admin, EntityKind.PERMISSION, [b.id, c.id])
        assert not third.changed

    def test_sync_without_detaching(self, gatekeeper):
        entities = gatekeeper.entities
        a, b = entities.create_permission("a.read"), entities.create_permission("b.read")
        admin = role_ref(entities.create_role("admin"))
        store = gatekeeper.store

        store.sync(admin, EntityKind.PERMISSION, [a.id])
        result = store.sync(admin, EntityKind.PERMISSION, [b.id], detaching=False)

        assert result.detached == ()
        names = {perm.name for perm in store.list_associated(admin, EntityKind.PERMISSION)}
        assert names == {"a.read", "b.read"}

    def test_empty_sync_clears(self, gatekeeper):
        entities = gatekeeper.entities
        a = entities.create_permission("a.read")
        admin = role_ref(entities.create_role("admin"))
        store = gatekeeper.store

        store.sync(admin, EntityKind.PERMISSION, [a.id])
        result = store.sync(admin, EntityKind.PERMISSION, [])

        assert result.detached == (a.id,)
        assert store.list_associated(admin, EntityKind.PERMISSION) == frozenset()

    def test_sync_with_missing_id_changes_nothing(self, gatekeeper):
        entities = gatekeeper.entities
        a = entities.create_permission("a.read")
        admin = role_ref(entities.create_role("admin"))
        store = gatekeeper.store

        with pytest.raises(NotFoundError):
            store.sync(admin, EntityKind.PERMISSION, [a.id, 999])
        assert store.list_associated(admin, EntityKind.PERMISSION) == frozenset()


class TestTeams:
    """Team-stamped principal rows"""

    def test_same_role_in_two_teams(self, teams_gatekeeper):
        entities = teams_gatekeeper.entities
        admin = entities.create_role("admin")
        acme, globex = entities.create_team("acme"), entities.create_team("globex")
        store = teams_gatekeeper.store

        assert store.attach(ALICE, EntityKind.ROLE, admin.id, acme.id)
        assert store.attach(ALICE, EntityKind.ROLE, admin.id, globex.id)
        assert store.attach(ALICE, EntityKind.ROLE, admin.id, None)
        assert not store.attach(ALICE, EntityKind.ROLE, admin.id, None)

        assert len(store.list_associated(ALICE, EntityKind.ROLE, ANY_TEAM)) == 3
        scoped = store.list_associated(ALICE, EntityKind.ROLE, acme.id)
        assert [role.team_id for role in scoped] == [acme.id]
        global_rows = store.list_associated(ALICE, EntityKind.ROLE, None)
        assert [role.team_id for role in global_rows] == [None]

    def test_detach_only_touches_its_team(self, teams_gatekeeper):
        entities = teams_gatekeeper.entities
        admin = entities.create_role("admin")
        acme = entities.create_team("acme")
        store = teams_gatekeeper.store
        store.attach(ALICE, EntityKind.ROLE, admin.id, acme.id)
        store.attach(ALICE, EntityKind.ROLE, admin.id, None)

        assert store.detach(ALICE, EntityKind.ROLE, admin.id, acme.id)
        remaining = store.list_associated(ALICE, EntityKind.ROLE, ANY_TEAM)
        assert [role.team_id for role in remaining] == [None]

    def test_unknown_team_raises(self, teams_gatekeeper):
        admin = teams_gatekeeper.entities.create_role("admin")
        with pytest.raises(NotFoundError):
            teams_gatekeeper.store.attach(ALICE, EntityKind.ROLE, admin.id, 999)

    def test_resolve_team(self, teams_gatekeeper):
        acme = teams_gatekeeper.entities.create_team("acme")
        assert teams_gatekeeper.store.resolve_team("acme") == acme.id
        with pytest.raises(NotFoundError):
            teams_gatekeeper.store.resolve_team("initech")

    def test_resolve_team_with_teams_disabled(self, gatekeeper):
        with pytest.raises(FeatureDisabledError):
            gatekeeper.store.resolve_team("acme")


class TestOwners:
    """Reverse lookups and cleanup"""

    def test_list_owners(self, gatekeeper):
        admin = gatekeeper.entities.create_role("admin")
        store = gatekeeper.store
        store.attach(BOB, EntityKind.ROLE, admin.id)
        store.attach(ALICE, EntityKind.ROLE, admin.id)
        store.attach(PrincipalRef(kind="bot", id="crawler"), EntityKind.ROLE, admin.id)

        owners = store.list_owners(EntityKind.ROLE, admin.id, principal_kind="user")
        assert owners == [ALICE, BOB]

    def test_detach_everywhere(self, modules_gatekeeper):
        entities = modules_gatekeeper.entities
        read = entities.create_permission("posts.read")
        admin = entities.create_role("admin")
        billing = entities.create_module("billing")
        store = modules_gatekeeper.store

        store.attach(role_ref(admin), EntityKind.PERMISSION, read.id)
        store.attach(EntityRef(kind=EntityKind.MODULE, id=billing.id), EntityKind.PERMISSION, read.id)
        store.attach(ALICE, EntityKind.PERMISSION, read.id)

        affected = store.detach_everywhere(EntityKind.PERMISSION, read.id)

        assert {ref.token for ref in affected} == {
            f"role:{admin.id}",
            f"module:{billing.id}",
            "principal.user:1",
        }
        assert store.list_associated(role_ref(admin), EntityKind.PERMISSION) == frozenset()
        assert store.list_associated(ALICE, EntityKind.PERMISSION) == frozenset()


class TestConcurrentAttach:
    """Rows inserted between the existence check and the insert"""

    def test_duplicate_global_row_rejected_by_database(self, teams_gatekeeper):
        admin = teams_gatekeeper.entities.create_role("admin")
        link = teams_gatekeeper.schema.link(None, EntityKind.ROLE)
        row = {"user_id": "1", "user_type": "user", "role_id": admin.id, "team_id": None}

        with teams_gatekeeper.engine.begin() as conn:
            conn.execute(insert(link.table).values(**row))
        with pytest.raises(IntegrityError):
            with teams_gatekeeper.engine.begin() as conn:
                conn.execute(insert(link.table).values(**row))

    def test_attach_losing_the_race_is_a_no_op(self, teams_gatekeeper, monkeypatch):
        admin = teams_gatekeeper.entities.create_role("admin")
        store = teams_gatekeeper.store
        assert store.attach(ALICE, EntityKind.ROLE, admin.id)

        racing = [True]
        real_exists = SqlAlchemyAssociationStore._link_exists

        def link_exists(session, link, where):
            if racing:
                racing.pop()
                return False
            return real_exists(session, link, where)

        monkeypatch.setattr(store, "_link_exists", link_exists)

        assert store.attach(ALICE, EntityKind.ROLE, admin.id) is False
        assert len(store.list_associated(ALICE, EntityKind.ROLE, ANY_TEAM)) == 1

    def test_sync_retries_after_conflict(self, gatekeeper, monkeypatch):
        admin = gatekeeper.entities.create_role("admin")
        store = gatekeeper.store
        real_sync_once = store._sync_once
        calls = []

        def sync_once(*args):
            calls.append(args)
            if len(calls) == 1:
                raise IntegrityError("INSERT", {}, Exception("duplicate row"))
            return real_sync_once(*args)

        monkeypatch.setattr(store, "_sync_once", sync_once)

        result = store.sync(ALICE, EntityKind.ROLE, [admin.id])
        assert result.attached == (admin.id,)
        assert len(calls) == 2
