"""Preflight checks run before anything is mutated."""

import pytest

from syncdock.deploy.preflight import (
    PROVISION_COMMANDS,
    TEARDOWN_COMMANDS,
    check_dependencies,
    run_preflight,
    validate_project_id,
)
from syncdock.deploy.workflow import PreflightError


@pytest.fixture
def all_tools(monkeypatch):
    monkeypatch.setattr("syncdock.deploy.preflight.command_exists", lambda name: True)


def test_missing_tool_named(monkeypatch):
    monkeypatch.setattr("syncdock.deploy.preflight.command_exists", lambda name: name != "ssh-keygen")
    with pytest.raises(PreflightError, match="'ssh-keygen' not found"):
        check_dependencies(PROVISION_COMMANDS)


def test_teardown_only_needs_gcloud(monkeypatch):
    monkeypatch.setattr("syncdock.deploy.preflight.command_exists", lambda name: name == "gcloud")
    check_dependencies(TEARDOWN_COMMANDS)


@pytest.mark.parametrize("value", ["", "   ", None])
def test_empty_project_id_rejected(value):
    with pytest.raises(PreflightError, match="Project ID is required"):
        validate_project_id(value)


async def test_missing_tool_before_any_remote_call(monkeypatch, fake_gcloud):
    monkeypatch.setattr("syncdock.deploy.preflight.command_exists", lambda name: name != "ssh-keygen")
    with pytest.raises(PreflightError):
        await run_preflight(PROVISION_COMMANDS, "demo-project")
    assert fake_gcloud.calls == []


async def test_empty_project_before_any_remote_call(all_tools, fake_gcloud):
    with pytest.raises(PreflightError):
        await run_preflight(PROVISION_COMMANDS, "")
    assert fake_gcloud.calls == []


async def test_not_logged_in(all_tools, fake_gcloud):
    fake_gcloud.accounts = []
    with pytest.raises(PreflightError, match="gcloud auth login"):
        await run_preflight(PROVISION_COMMANDS, "demo-project")


async def test_unknown_project(all_tools, fake_gcloud):
    with pytest.raises(PreflightError, match="does not exist"):
        await run_preflight(PROVISION_COMMANDS, "other-project")


async def test_preflight_passes(all_tools, fake_gcloud):
    assert await run_preflight(PROVISION_COMMANDS, " demo-project ") == "demo-project"
    assert all(c[:2] in (["gcloud", "auth"], ["gcloud", "projects"]) for c in fake_gcloud.calls)
