"""
Seed script to populate default permissions, modules and roles.

Run this script after configuring the database to create:
- Default permissions
- Default modules (when modules are enabled)
- Default roles with their permission and module assignments

The script is idempotent: existing entities are reused and role
assignments are synced without detaching anything added by hand.

Usage:
    python -m scripts.seed_permissions
"""
from gatekeeper.core.config import AuthzConfig
from gatekeeper.core.exceptions import NotFoundError
from gatekeeper.core.types import EntityKind
from gatekeeper.main import Gatekeeper
from gatekeeper.utils import get_logger


log = get_logger(__name__)


DEFAULT_PERMISSIONS = [
    # Posts permissions
    ("posts.create", "Create new posts"),
    ("posts.read", "View posts"),
    ("posts.update", "Update existing posts"),
    ("posts.delete", "Delete posts"),
    ("posts.publish", "Publish posts"),

    # Comments permissions
    ("comments.read", "View comments"),
    ("comments.moderate", "Moderate comments"),

    # User management permissions
    ("users.create", "Create new users"),
    ("users.read", "View user information"),
    ("users.update", "Update user information"),
    ("users.delete", "Delete users"),
    ("users.manage_roles", "Manage user roles"),

    # Role and permission management
    ("roles.read", "View roles"),
    ("roles.manage", "Create, update and delete roles"),
    ("permissions.read", "View permissions"),
    ("permissions.assign", "Assign permissions to roles and users"),

    # Billing permissions
    ("billing.read", "View billing information"),
    ("billing.update", "Update billing information"),

    # Audit logs
    ("audit.read", "View audit logs"),
]


DEFAULT_MODULES = {
    "publishing": {
        "description": "Everything needed to write and publish posts",
        "permissions": ["posts.create", "posts.read", "posts.update", "posts.publish"],
    },
    "billing": {
        "description": "Billing screens",
        "permissions": ["billing.read", "billing.update"],
    },
}


DEFAULT_ROLES = {
    "admin": {
        "description": "Administrator with all permissions",
        "permissions": "ALL",  # Special case - gets all permissions
        "modules": [],
    },
    "editor": {
        "description": "Writes, publishes and moderates content",
        "permissions": ["posts.delete", "comments.read", "comments.moderate"],
        "modules": ["publishing"],
    },
    "author": {
        "description": "Writes posts",
        "permissions": ["posts.create", "posts.read", "posts.update", "comments.read"],
        "modules": [],
    },
    "accountant": {
        "description": "Billing department",
        "permissions": ["users.read"],
        "modules": ["billing"],
    },
    "auditor": {
        "description": "Read-only access to most resources",
        "permissions": [
            "posts.read",
            "comments.read",
            "users.read",
            "roles.read",
            "permissions.read",
            "billing.read",
            "audit.read",
        ],
        "modules": [],
    },
}


def _get_or_create(gatekeeper: Gatekeeper, kind: EntityKind, name: str, description: str):
    try:
        existing = gatekeeper.entities.get_by_name(kind, name)
        log.debug(f"{kind.value.capitalize()} '{name}' already exists, skipping")
        return existing
    except NotFoundError:
        entity = gatekeeper.entities.create(kind, name=name, description=description)
        log.info(f"Created {kind.value}: {name}")
        return entity


def seed_permissions(gatekeeper: Gatekeeper) -> dict:
    """
    Create default permissions.

    Returns:
        Dictionary mapping permission names to Permission objects
    """
    log.info("Creating default permissions...")
    permissions_map = {
        name: _get_or_create(gatekeeper, EntityKind.PERMISSION, name, description)
        for name, description in DEFAULT_PERMISSIONS
    }
    log.info(f"Seeded {len(permissions_map)} permissions")
    return permissions_map


def _pick(names: list, available: dict, owner: str) -> list:
    picked = []
    for name in names:
        if name in available:
            picked.append(available[name])
        else:
            log.warning(f"'{name}' not found for '{owner}'")
    return picked


def seed_modules(gatekeeper: Gatekeeper, permissions_map: dict) -> dict:
    """
    Create default modules and assign their permissions.

    Returns an empty mapping when modules are disabled.
    """
    if not gatekeeper.config.use_modules:
        log.info("Modules are disabled, skipping module seeding")
        return {}

    log.info("Creating default modules...")
    modules_map = {}
    for module_name, module_config in DEFAULT_MODULES.items():
        module = _get_or_create(gatekeeper, EntityKind.MODULE, module_name, module_config["description"])
        permissions = _pick(module_config["permissions"], permissions_map, module_name)
        gatekeeper.module(module).sync_permissions(permissions, detaching=False)
        modules_map[module_name] = module
    return modules_map


def seed_roles(gatekeeper: Gatekeeper, permissions_map: dict, modules_map: dict) -> dict:
    """
    Create default roles and assign permissions and modules.

    Args:
        gatekeeper: Gatekeeper bound to the target database
        permissions_map: Dictionary of permission name -> Permission object
        modules_map: Dictionary of module name -> Module object
    """
    log.info("Creating default roles...")
    roles_map = {}

    for role_name, role_config in DEFAULT_ROLES.items():
        role = _get_or_create(gatekeeper, EntityKind.ROLE, role_name, role_config["description"])
        resolver = gatekeeper.role(role)

        if role_config["permissions"] == "ALL":
            permissions = list(permissions_map.values())
        else:
            permissions = _pick(role_config["permissions"], permissions_map, role_name)
        resolver.sync_permissions(permissions, detaching=False)

        modules = []
        if gatekeeper.config.use_modules:
            modules = _pick(role_config["modules"], modules_map, role_name)
            resolver.sync_modules(modules, detaching=False)

        log.info(f"Role '{role_name}': {len(permissions)} permissions, {len(modules)} modules")
        roles_map[role_name] = role

    return roles_map


def seed(gatekeeper: Gatekeeper) -> dict:
    """Seed permissions, modules and roles; returns the roles by name."""
    permissions_map = seed_permissions(gatekeeper)
    modules_map = seed_modules(gatekeeper, permissions_map)
    return seed_roles(gatekeeper, permissions_map, modules_map)


def main():
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")

    gatekeeper = Gatekeeper.from_config(AuthzConfig.from_env())

    log.info("Initializing database tables...")
    gatekeeper.init_db()

    try:
        seed(gatekeeper)
    except Exception as e:
        log.error(f"Error seeding permissions: {e}", exc_info=True)
        raise

    log.info("Permission seeding completed successfully!")
    log.info("Default roles created:")
    for role_name, role_config in DEFAULT_ROLES.items():
        log.info(f"  - {role_name}: {role_config['description']}")


if __name__ == "__main__":
    main()
