"""
Pytest configuration and fixtures for bookkeeping server tests
"""
import os
import sys
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from bookkeeping.api.app import create_app
from bookkeeping.config import Config
from bookkeeping.lifecycle import ServerLifecycle
from tests.helpers.fakes import (
    FakeHealthMonitor,
    FakeRepository,
    FakeScheduler,
    FakeServingLoop,
    FakeUploader,
)


@pytest.fixture
def backup_dir(tmp_path) -> str:
    path = tmp_path / "backups"
    path.mkdir()
    return str(path)


@pytest.fixture
def server_env(backup_dir) -> Dict[str, str]:
    """Minimal valid environment for the server"""
    return {
        "SERVER_HOST": "127.0.0.1",
        "SERVER_PORT": "8080",
        "SERVER_CONTEXT_TIMEOUT": "2",
        "CRON_BACKUP_DAILY": "0 3 * * *",
        "APP_ENV": "test",
        "APP_VERSION": "1.2.3",
        "SHUTDOWN_GRACE_SECONDS": "2",
        "BACKUP_DIR": backup_dir,
        "BACKUP_UPLOAD_URL": "https://storage.test/upload",
        "BACKUP_DRAIN_TIMEOUT_SECONDS": "5",
    }


@pytest.fixture
def calls() -> List[str]:
    return []


@pytest.fixture
def fakes(calls, backup_dir) -> SimpleNamespace:
    """Collaborator fakes sharing one call log"""
    return SimpleNamespace(
        repository=FakeRepository(calls, backup_dir),
        uploader=FakeUploader(calls),
        health=FakeHealthMonitor(calls),
        serving=FakeServingLoop(calls),
        scheduler=None,
    )


@pytest.fixture
def make_lifecycle(server_env, calls, fakes):
    """Build a ServerLifecycle wired to fakes; keyword overrides replace factories"""
    def _make(env: Optional[Dict[str, str]] = None, **overrides) -> ServerLifecycle:
        resolved_env = dict(server_env)
        resolved_env.update(env or {})

        def app_factory(**kwargs):
            calls.append("routing")
            return create_app(**kwargs)

        def health_monitor_factory(timeout):
            fakes.health.timeout = timeout
            return fakes.health

        def scheduler_factory(pipeline, expression):
            fakes.scheduler = FakeScheduler(calls, pipeline, expression)
            return fakes.scheduler

        factories = dict(
            config_loader=lambda: Config.from_env(resolved_env),
            repository_factory=lambda config: fakes.repository,
            uploader_factory=lambda config: fakes.uploader,
            health_monitor_factory=health_monitor_factory,
            app_factory=app_factory,
            scheduler_factory=scheduler_factory,
            serving_factory=lambda app, address, config: fakes.serving,
            configure_logging=False,
        )
        factories.update(overrides)
        return ServerLifecycle(**factories)
    return _make

