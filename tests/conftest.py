"""
Shared fixtures: gatekeepers backed by in-memory SQLite, one per feature set.
"""
import pytest

from gatekeeper.core.cache import AuthzCache
from gatekeeper.core.config import AuthzConfig
from gatekeeper.main import Gatekeeper


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def build_gatekeeper(**options) -> Gatekeeper:
    config = AuthzConfig(database_url="sqlite://", **options)
    gatekeeper = Gatekeeper.from_config(config)
    gatekeeper.init_db()
    return gatekeeper


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return AuthzCache(clock=clock)


@pytest.fixture
def gatekeeper():
    """Plain roles and permissions."""
    gk = build_gatekeeper()
    yield gk
    gk.engine.dispose()


@pytest.fixture
def modules_gatekeeper():
    gk = build_gatekeeper(use_modules=True)
    yield gk
    gk.engine.dispose()


@pytest.fixture
def teams_gatekeeper():
    """Teams and modules enabled, non-strict team checks."""
    gk = build_gatekeeper(use_teams=True, use_modules=True)
    yield gk
    gk.engine.dispose()


@pytest.fixture
def strict_gatekeeper():
    """Teams enabled with strict team checks."""
    gk = build_gatekeeper(use_teams=True, use_modules=True, teams_strict_check=True)
    yield gk
    gk.engine.dispose()
