"""Root-level pytest fixtures for the glassline test suite.

Provides shared configuration fixtures following the Pydantic-based
architecture. All tests must use these fixtures instead of creating raw dict
configs.
"""

import pytest
from pathlib import Path
import tempfile
import shutil

from glassline.schemas import ParamConfig, UserConfig, resolve_config
from glassline.pipeline import build_engine
from glassline.store import TableStore

from tests.helpers.clock import FakeClock


# =============================================================================
# Configuration Fixtures (Pydantic-based)
# =============================================================================

@pytest.fixture
def param_config():
    """Expert configuration with all defaults."""
    return ParamConfig()


@pytest.fixture
def internal_config(param_config):
    """Fully validated runtime configuration (no overrides).

    Use this when tests don't care about specific config values and just
    need a valid InternalConfig to pass to constructors.
    """
    return resolve_config(param_config, None, None)


@pytest.fixture
def make_config(param_config):
    """Factory fixture for creating custom test configs.

    Returns a callable that accepts UserConfig-compatible kwargs.

    Examples
    --------
    >>> def test_custom_workers(make_config):
    ...     config = make_config(max_workers=1)
    ...     assert config.cascade.max_workers == 1
    """
    def _make(**user_overrides):
        """Create InternalConfig with user overrides."""
        if user_overrides:
            user = UserConfig(**user_overrides)
            return resolve_config(param_config, user, None)
        else:
            return resolve_config(param_config, None, None)

    return _make


# =============================================================================
# Directory Fixtures
# =============================================================================

@pytest.fixture
def temp_dir():
    """Temporary directory that is cleaned up after test."""
    d = tempfile.mkdtemp()
    yield Path(d)
    shutil.rmtree(d, ignore_errors=True)


# =============================================================================
# Store Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """In-memory table store on the fake clock."""
    s = TableStore(":memory:", clock=clock)
    yield s
    s.close()


@pytest.fixture
def engine(store, internal_config):
    """Cascade engine over ``store`` with the full setup script applied."""
    return build_engine(internal_config, store)
