"""
Error taxonomy for the authorization core.

Malformed input fails at the resolver boundary, before the store or the cache
is touched. Store errors propagate unchanged.
"""


class GatekeeperError(Exception):
    """Base class for every error raised by gatekeeper."""


class InvalidInputError(GatekeeperError, ValueError):
    """A role/permission/module/team reference cannot be resolved to an id."""


class InvalidArgumentError(GatekeeperError, ValueError):
    """Malformed call options, e.g. an unknown ``ability()`` return type."""


class NotFoundError(GatekeeperError, LookupError):
    """A referenced entity does not exist in the store."""

    def __init__(self, kind: str, ref):
        self.kind = kind
        self.ref = ref
        super().__init__(f"{kind} not found: {ref!r}")


class ConflictError(GatekeeperError):
    """An entity with the same unique name already exists."""


class FeatureDisabledError(GatekeeperError):
    """Modules or teams were used while disabled in the configuration."""

    def __init__(self, feature: str):
        self.feature = feature
        super().__init__(f"{feature} are disabled in the authorization config")
