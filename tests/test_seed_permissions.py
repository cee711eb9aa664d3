"""
Default permissions, modules and roles.
"""
from gatekeeper.core.types import EntityKind
from scripts.seed_permissions import DEFAULT_PERMISSIONS, DEFAULT_ROLES, seed


class TestSeed:
    def test_seed_roles_and_permissions(self, gatekeeper):
        roles = seed(gatekeeper)
        assert set(roles) == set(DEFAULT_ROLES)

        admin = gatekeeper.role(roles["admin"])
        assert admin.all_permissions() == frozenset(name for name, _ in DEFAULT_PERMISSIONS)

        user = gatekeeper.user(1)
        user.attach_role(roles["auditor"])
        assert user.can("audit.read")
        assert not user.can("posts.delete")

    def test_seed_is_idempotent(self, gatekeeper):
        seed(gatekeeper)
        seed(gatekeeper)
        permissions = gatekeeper.entities.list_entities(EntityKind.PERMISSION)
        assert len(permissions) == len(DEFAULT_PERMISSIONS)

    def test_seed_modules(self, modules_gatekeeper):
        roles = seed(modules_gatekeeper)
        editor = modules_gatekeeper.role(roles["editor"])

        assert editor.has_module("publishing")
        assert editor.has_permission("posts.publish")
        assert not editor.has_permission("billing.read")

        accountant = modules_gatekeeper.user(2)
        accountant.attach_role(roles["accountant"])
        assert accountant.can(["billing.read", "billing.update"], require_all=True)
