"""
Role, Module and Permission resolvers.
"""
import pytest

from gatekeeper.core.exceptions import FeatureDisabledError, InvalidArgumentError
from gatekeeper.core.types import EntityKind, PrincipalRef


class TestRoleResolver:
    """Role permissions and modules"""

    def test_attach_and_check_permission(self, gatekeeper):
        entities = gatekeeper.entities
        editor = gatekeeper.role(entities.create_role("editor"))
        editor.attach_permission(entities.create_permission("posts.update"))

        assert editor.has_permission("posts.update")
        assert editor.has_permission("posts.*")
        assert not editor.has_permission("posts.delete")

    def test_require_all(self, gatekeeper):
        entities = gatekeeper.entities
        editor = gatekeeper.role(entities.create_role("editor"))
        editor.attach_permissions([
            entities.create_permission("posts.create"),
            entities.create_permission("posts.update"),
        ])

        assert editor.has_permission(["posts.create", "posts.delete"])
        assert not editor.has_permission(["posts.create", "posts.delete"], require_all=True)
        assert editor.has_permission(["posts.create", "posts.update"], require_all=True)

    def test_cache_is_flushed_on_mutation(self, gatekeeper):
        entities = gatekeeper.entities
        delete = entities.create_permission("posts.delete")
        editor = gatekeeper.role(entities.create_role("editor"))

        assert not editor.has_permission("posts.delete")
        editor.attach_permission(delete)
        assert editor.has_permission("posts.delete")
        editor.detach_permission(delete)
        assert not editor.has_permission("posts.delete")

    def test_detach_all_permissions(self, gatekeeper):
        entities = gatekeeper.entities
        editor = gatekeeper.role(entities.create_role("editor"))
        a, b = entities.create_permission("a.read"), entities.create_permission("b.read")
        editor.attach_permissions([a, b])

        result = editor.detach_permissions()

        assert sorted(result.detached) == sorted([a.id, b.id])
        assert editor.cached_permissions() == frozenset()

    def test_sync_permissions(self, gatekeeper):
        entities = gatekeeper.entities
        editor = gatekeeper.role(entities.create_role("editor"))
        a, b = entities.create_permission("a.read"), entities.create_permission("b.read")

        editor.sync_permissions([a])
        result = editor.sync_permissions([b])

        assert result.attached == (b.id,)
        assert result.detached == (a.id,)
        assert editor.all_permissions() == frozenset({"b.read"})

    def test_modules_disabled(self, gatekeeper):
        editor = gatekeeper.role(gatekeeper.entities.create_role("editor"))
        with pytest.raises(FeatureDisabledError):
            editor.has_module("billing")
        with pytest.raises(FeatureDisabledError):
            editor.attach_module(1)

    def test_principals(self, gatekeeper):
        admin = gatekeeper.entities.create_role("admin")
        gatekeeper.user(7).attach_role(admin)
        gatekeeper.principal(8, kind="user").attach_role(admin)

        owners = gatekeeper.role(admin).principals("users")
        assert [owner.id for owner in owners] == ["7", "8"]

        with pytest.raises(InvalidArgumentError):
            gatekeeper.role(admin).principals("robots")


class TestModules:
    """Module permissions, directly and through roles"""

    def test_module_permissions(self, modules_gatekeeper):
        entities = modules_gatekeeper.entities
        billing = modules_gatekeeper.module(entities.create_module("billing"))
        billing.attach_permission(entities.create_permission("invoices.read"))

        assert billing.has_permission("invoices.read")
        assert billing.has_permission("invoices.*")
        assert not billing.has_permission("invoices.write")

    def test_role_has_module_permissions(self, modules_gatekeeper):
        entities = modules_gatekeeper.entities
        billing = entities.create_module("billing")
        modules_gatekeeper.module(billing).attach_permission(entities.create_permission("invoices.read"))
        accountant = modules_gatekeeper.role(entities.create_role("accountant"))
        accountant.attach_module(billing)

        assert accountant.has_module("billing")
        assert accountant.has_module(["billing", "reports"])
        assert not accountant.has_module(["billing", "reports"], require_all=True)
        assert accountant.has_permission("invoices.read")
        assert accountant.all_permissions() == frozenset({"invoices.read"})

    def test_module_change_visible_through_role(self, modules_gatekeeper):
        """
        Permissions are composed at check time, so a module change is seen
        through a role whose own cache was never flushed.
        """
        entities = modules_gatekeeper.entities
        billing = entities.create_module("billing")
        refund = entities.create_permission("invoices.refund")
        accountant = modules_gatekeeper.role(entities.create_role("accountant"))
        accountant.attach_module(billing)

        assert not accountant.has_permission("invoices.refund")
        modules_gatekeeper.module(billing).attach_permission(refund)
        assert accountant.has_permission("invoices.refund")

    def test_module_roles(self, modules_gatekeeper):
        entities = modules_gatekeeper.entities
        billing = entities.create_module("billing")
        accountant = entities.create_role("accountant")
        modules_gatekeeper.role(accountant).attach_module(billing)

        roles = modules_gatekeeper.module(billing).roles()
        assert [role.id for role in roles] == [accountant.id]

    def test_detach_all_modules(self, modules_gatekeeper):
        entities = modules_gatekeeper.entities
        accountant = modules_gatekeeper.role(entities.create_role("accountant"))
        accountant.attach_modules([entities.create_module("billing"), entities.create_module("reports")])

        accountant.detach_modules()
        assert accountant.cached_modules() == frozenset()

    def test_module_resolver_requires_modules(self, gatekeeper):
        with pytest.raises(FeatureDisabledError):
            gatekeeper.module(1)


class TestPermissionResolver:
    def test_roles_and_modules(self, modules_gatekeeper):
        entities = modules_gatekeeper.entities
        read = entities.create_permission("posts.read")
        editor = entities.create_role("editor")
        publishing = entities.create_module("publishing")
        modules_gatekeeper.role(editor).attach_permission(read)
        modules_gatekeeper.module(publishing).attach_permission(read)

        resolver = modules_gatekeeper.permission(read)
        assert [role.id for role in resolver.roles()] == [editor.id]
        assert [module.id for module in resolver.modules()] == [publishing.id]


class TestLifecycle:
    """Entity deletion through the entity service"""

    def test_hard_delete_clears_associations(self, gatekeeper):
        entities = gatekeeper.entities
        delete = entities.create_permission("posts.delete")
        editor = entities.create_role("editor")
        gatekeeper.role(editor).attach_permission(delete)
        user = gatekeeper.user(1)
        user.attach_role(editor)
        user.attach_permission(delete)

        assert user.can("posts.delete")
        entities.delete(EntityKind.PERMISSION, delete.id, force=True)

        assert not user.can("posts.delete")
        assert gatekeeper.role(editor).cached_permissions() == frozenset()
        assert user.cached_permissions() == frozenset()

    def test_soft_delete_keeps_associations(self, gatekeeper):
        entities = gatekeeper.entities
        editor = entities.create_role("editor")
        user = gatekeeper.user(1)
        user.attach_role(editor)

        entities.delete(EntityKind.ROLE, editor.id)

        assert entities.get(EntityKind.ROLE, editor.id).is_trashed
        assert gatekeeper.store.list_owners(EntityKind.ROLE, editor.id) == [
            PrincipalRef(kind="user", id="1")
        ]

    def test_deleting_role_flushes_principal_cache(self, gatekeeper):
        entities = gatekeeper.entities
        editor = entities.create_role("editor")
        user = gatekeeper.user(1)
        user.attach_role(editor)
        assert user.has_role("editor")

        entities.delete(EntityKind.ROLE, editor.id, force=True)
        assert not user.has_role("editor")

    def test_team_delete_clears_team_rows(self, teams_gatekeeper):
        entities = teams_gatekeeper.entities
        admin = entities.create_role("admin")
        acme = entities.create_team("acme")
        user = teams_gatekeeper.user(1)
        user.attach_role(admin, team=acme)
        user.attach_role(admin)

        entities.delete(EntityKind.TEAM, acme.id)

        roles = user.cached_roles()
        assert [role.team_id for role in roles] == [None]

    def test_team_resolver_requires_teams(self, gatekeeper):
        with pytest.raises(FeatureDisabledError):
            gatekeeper.team(1)
