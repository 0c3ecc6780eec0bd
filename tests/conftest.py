"""Shared fixtures for reqchain scenario tests."""

import json

import pytest
from click.testing import CliRunner

from reqchain import core
from reqchain.executor import RequestResult


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def global_reqchain_dir(tmp_path, monkeypatch):
    """Override the global ~/.reqchain directory to a temp location."""
    fake_global = tmp_path / "fake_home" / ".reqchain"
    fake_global.mkdir(parents=True)
    monkeypatch.setattr(core, "GLOBAL_DIR", fake_global)
    monkeypatch.setattr(core, "GLOBAL_CONFIG", fake_global / "config.yaml")
    monkeypatch.setattr(core, "GLOBAL_SESSION", fake_global / "session.json")
    return fake_global


@pytest.fixture
def tmp_project(tmp_path, monkeypatch):
    """Temporary project directory as CWD."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


def make_request_result(
    status_code=200,
    body=None,
    headers=None,
    elapsed_ms=42.0,
    error=None,
    raw_text="",
):
    """Factory for mock RequestResult objects."""
    r = RequestResult()
    r.status_code = status_code
    r.headers = headers or {}
    r.body = body
    r.elapsed_ms = elapsed_ms
    r.error = error
    r.raw_text = raw_text or (
        json.dumps(body) if isinstance(body, dict | list) else str(body or "")
    )
    return r


def write_request(path, text):
    """Write a request file, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path
