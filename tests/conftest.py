"""Shared test fixtures and utilities for forge-cli tests.

Provides:
- Isolation from the real environment (HOME, cwd, API key variables)
- A temporary sandbox and executor
- A scripted fake backend (see tests/helpers.py)
"""

import logging
import os
from pathlib import Path
from typing import Generator

import pytest
import structlog

from forge_cli.config import ForgeSettings, load_settings
from forge_cli.safety.validator import Validator
from forge_cli.sandbox.executor import SandboxConfig, SandboxExecutor
from tests.helpers import FakeBackend

KEY_ENV_VARS = ("GEMINI_API_KEY", "GEMINI_API_KEYS", "GOOGLE_API_KEY", "API_KEYS")


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Keep every test away from the real HOME, cwd and API keys."""
    home = tmp_path / "home"
    project = tmp_path / "project"
    home.mkdir()
    project.mkdir()

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(project)
    for var in KEY_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.startswith("FORGE_"):
            monkeypatch.delenv(var, raising=False)

    yield tmp_path

    structlog.reset_defaults()
    logging.getLogger().handlers.clear()


@pytest.fixture
def home_dir(isolated_env: Path) -> Path:
    return isolated_env / "home"


@pytest.fixture
def project_dir(isolated_env: Path) -> Path:
    return isolated_env / "project"


@pytest.fixture
def sandbox_dir(tmp_path: Path) -> Path:
    """Sandbox root (created by the executor)."""
    return tmp_path / "sandbox"


@pytest.fixture
def executor(sandbox_dir: Path) -> SandboxExecutor:
    return SandboxExecutor(SandboxConfig(workdir=sandbox_dir, timeout_ms=5000))


@pytest.fixture
def validator() -> Validator:
    """Validator with the built-in denylist."""
    return Validator()


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def settings(tmp_path: Path, sandbox_dir: Path) -> ForgeSettings:
    """Settings with one test key and every path under tmp_path."""
    return load_settings(
        api_keys=["test-key"],
        sandbox_workdir=sandbox_dir,
        audit_dir=tmp_path / "audit",
        key_state_file=tmp_path / "key_state.json",
    )
