"""
Pytest configuration and shared fixtures for runslot tests.

This module provides:
- Custom markers for test categorization
- Shared fixtures for test isolation
- Automatic Docker availability detection
"""

import os
import shutil
import tempfile
import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest


# =============================================================================
# Pytest Hooks and Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (require Docker)"
    )
    config.addinivalue_line(
        "markers", "slow: Slow tests"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests if Docker is not available."""
    try:
        import docker
        docker.from_env().ping()
        docker_available = True
    except Exception:
        docker_available = False

    skip_integration = pytest.mark.skip(reason="Docker not available")

    for item in items:
        if "integration" in item.keywords and not docker_available:
            item.add_marker(skip_integration)


# =============================================================================
# Directory and Path Fixtures
# =============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files.

    Yields:
        Path: Path to temporary directory, cleaned up after test.
    """
    tmpdir = tempfile.mkdtemp(prefix="runslot_test_")
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def temp_config_dir(temp_dir, monkeypatch):
    """Create a temporary config directory and point the config layer at it.

    Yields:
        Path: Path to .runslot config directory
    """
    config_dir = temp_dir / ".runslot"
    config_dir.mkdir(parents=True)

    monkeypatch.setenv("HOME", str(temp_dir))
    # CONFIG_FILE is resolved at import time
    monkeypatch.setattr("runslot.utils.config.CONFIG_DIR", config_dir)
    monkeypatch.setattr("runslot.utils.config.CONFIG_FILE", config_dir / "config.yaml")

    yield config_dir


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Drop RUNSLOT_* overrides inherited from the developer's shell."""
    for name in list(os.environ):
        if name.startswith("RUNSLOT_"):
            monkeypatch.delenv(name)


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def default_config():
    """Get a fresh default config instance.

    Returns:
        Config: Default configuration object
    """
    from runslot.utils.config import Config
    return Config()


@pytest.fixture
def config_file(temp_config_dir):
    """Create a test config file.

    Returns:
        Path: Path to created config file
    """
    config_path = temp_config_dir / "config.yaml"
    config_content = """
logging:
  level: DEBUG
  verbose: true

daemon:
  port: 9999

scheduler:
  main_branch: trunk
  workers: 2

executor:
  backend: docker
  image: rust:1.80
"""
    config_path.write_text(config_content)
    return config_path


# =============================================================================
# Mock Fixtures
# =============================================================================

@pytest.fixture
def mock_docker_client():
    """Mock Docker client for testing without Docker.

    Yields:
        MagicMock: Mocked Docker client with common operations
    """
    with patch("docker.from_env") as mock:
        client = MagicMock()
        mock.return_value = client

        client.images.pull.return_value = MagicMock()
        client.images.get.return_value = MagicMock()

        container = MagicMock()
        container.id = "test_container_123"
        container.status = "running"
        container.wait.return_value = {"StatusCode": 0}
        container.logs.return_value = b"==> Build project\nok\n"
        client.containers.run.return_value = container
        client.containers.get.return_value = container

        yield client


@pytest.fixture
def mock_requests():
    """Mock requests library for HTTP testing.

    Yields:
        dict: Dictionary with 'get', 'post' and 'delete' mock objects
    """
    with patch("requests.get") as mock_get, patch("requests.post") as mock_post, \
         patch("requests.delete") as mock_delete:
        mock_get.return_value.status_code = 200
        mock_get.return_value.json.return_value = {"status": "ok"}

        mock_post.return_value.status_code = 200
        mock_post.return_value.json.return_value = {"status": "ok"}

        mock_delete.return_value.status_code = 200
        mock_delete.return_value.json.return_value = {"status": "ok"}

        yield {"get": mock_get, "post": mock_post, "delete": mock_delete}


class FakeExecutor:
    """Records start/cancel calls and runs nothing until told to finish."""

    name = "fake"

    def __init__(self):
        self.started = []
        self.cancelled = []
        self.callbacks = {}
        self.fail_start = False
        self._lock = threading.Lock()

    def start(self, handle, pipeline, on_complete):
        if self.fail_start:
            raise RuntimeError("no capacity")
        with self._lock:
            self.started.append(handle)
            self.callbacks[handle.run_id] = on_complete

    def cancel(self, handle):
        with self._lock:
            self.cancelled.append(handle)
        return True

    def finish(self, handle, outcome):
        """Report an outcome the way a real executor's job thread would."""
        return self.callbacks[handle.run_id](handle, outcome)

    def shutdown(self):
        pass


@pytest.fixture
def fake_executor():
    return FakeExecutor()


# =============================================================================
# Sample Data Fixtures
# =============================================================================

@pytest.fixture
def make_event():
    """Factory for trigger events.

    Returns:
        Callable: make_event(branch, commit, event_type="synchronize")
    """
    from runslot.scheduler.models import EventType, TriggerEvent

    def _make(branch="feature-x", commit="c1", event_type="synchronize"):
        return TriggerEvent(EventType(event_type), branch, commit)

    return _make


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def test_db(temp_dir, monkeypatch):
    """Create a test SQLite database.

    Yields:
        Path: Path to test database file
    """
    db_path = temp_dir / "test_state.db"
    monkeypatch.setattr("runslot.state.store.DB_FILE", db_path)

    from runslot.state import store
    store.init_db()

    yield db_path
