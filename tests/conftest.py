"""Shared pytest fixtures for all test modules."""

import json
import os
import subprocess
import sys

import pytest

from syncdock.config import DeploymentConfig, KeyConfig, Timings
from syncdock.deploy.workflow import RunState

PROJECT_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture(scope="session")
def project_root():
    """Absolute path to the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def run_cli(project_root):
    """Return a callable that invokes the syncdock CLI as a subprocess."""

    def _run(*args, env=None):
        result = subprocess.run(
            [sys.executable, "-m", "syncdock.syncdock", *args],
            capture_output=True,
            text=True,
            cwd=project_root,
            env={**os.environ, **(env or {})},
        )
        return result.returncode, result.stdout, result.stderr

    return _run


@pytest.fixture
def config(tmp_path):
    """DeploymentConfig with no waits and the key directory under tmp_path."""
    return DeploymentConfig(
        keys=KeyConfig(directory=str(tmp_path / "keys")),
        timings=Timings(
            api_poll_interval=0,
            api_enable_timeout=0,
            key_propagation_wait=0,
            instance_boot_wait=0,
        ),
    )


@pytest.fixture
def state():
    return RunState(project_id="demo-project")


# ── Fake gcloud / ssh-keygen ────────────────────────────────────────


class FakeGcloud:
    """In-memory stand-in for gcloud and ssh-keygen.

    Interprets the argument lists the provisioning layer builds and keeps
    a registry of resources, so workflows can be run end to end. Every call
    is recorded in ``calls``; ``fail_on`` holds (resource, verb, name)
    triples whose mutation should fail.
    """

    def __init__(self):
        self.calls = []
        self.accounts = ["operator@example.com"]
        self.projects = {"demo-project"}
        self.enabled_apis = set()
        self.addresses = {}
        self.instances = {}
        self.firewall_rules = {}
        self.project_ssh_keys = ""
        self.fail_on = set()
        self._next_ip = 10

    def count(self, resource, verb):
        return sum(1 for c in self.calls if c[:1] == ["gcloud"] and c[2:4] == [resource, verb])

    def remote_calls(self):
        return [c for c in self.calls if c[:1] == ["gcloud"]]

    async def run(self, command, dry_run=False, timeout=600):
        command = list(command)
        self.calls.append(command)
        if dry_run:
            return 0, "", ""
        if command[0] == "ssh-keygen":
            return self._ssh_keygen(command)
        if command[:3] == ["gcloud", "auth", "list"]:
            return 0, "\n".join(self.accounts) + ("\n" if self.accounts else ""), ""
        if command[:3] == ["gcloud", "projects", "describe"]:
            return (0, "", "") if command[3] in self.projects else (1, "", "NOT_FOUND")
        if command[:2] == ["gcloud", "services"]:
            return self._services(command)
        if command[:2] == ["gcloud", "compute"]:
            return self._compute(command)
        return 1, "", f"unexpected command: {command}"

    def _flag(self, command, name):
        prefix = f"--{name}="
        for part in command:
            if part.startswith(prefix):
                return part[len(prefix):]
        return None

    def _ssh_keygen(self, command):
        path = command[command.index("-f") + 1]
        with open(path, "w") as f:
            f.write("PRIVATE KEY\n")
        with open(f"{path}.pub", "w") as f:
            f.write("ssh-rsa AAAAFAKEKEY ubuntu@syncdock\n")
        return 0, "", ""

    def _services(self, command):
        if command[2] == "list":
            return 0, "\n".join(sorted(self.enabled_apis)), ""
        if command[2] == "enable":
            self.enabled_apis.add(command[3])
            return 0, "", ""
        return 1, "", "bad services command"

    def _compute(self, command):
        resource, verb = command[2], command[3]
        name = command[4] if len(command) > 4 and not command[4].startswith("--") else None
        if (resource, verb, name) in self.fail_on:
            return 1, "", f"simulated failure: {resource} {verb} {name}"

        if resource == "project-info":
            return self._project_info(command, verb)

        registry = {
            "addresses": self.addresses,
            "instances": self.instances,
            "firewall-rules": self.firewall_rules,
        }[resource]

        if verb == "describe":
            if name not in registry:
                return 1, "", "NOT_FOUND"
            fmt = self._flag(command, "format")
            if fmt == "value(address)":
                return 0, registry[name]["address"] + "\n", ""
            if fmt == "value(status)":
                return 0, "RUNNING\n", ""
            return 0, f"name: {name}\n", ""
        if verb == "create":
            if name in registry:
                return 1, "", "ALREADY_EXISTS"
            entry = {"command": command}
            if resource == "addresses":
                entry["address"] = f"203.0.113.{self._next_ip}"
                self._next_ip += 1
            registry[name] = entry
            return 0, "", ""
        if verb == "delete":
            if name not in registry:
                return 1, "", "NOT_FOUND"
            del registry[name]
            return 0, "", ""
        if verb == "add-metadata":
            if name not in registry:
                return 1, "", "NOT_FOUND"
            path = self._flag(command, "metadata-from-file").split("=", 1)[1]
            with open(path) as f:
                registry[name]["ssh-keys"] = f.read()
            return 0, "", ""
        return 1, "", f"bad compute command: {command}"

    def _project_info(self, command, verb):
        if verb == "add-metadata":
            path = self._flag(command, "metadata-from-file").split("=", 1)[1]
            with open(path) as f:
                self.project_ssh_keys = f.read()
            return 0, "", ""
        if verb == "remove-metadata":
            self.project_ssh_keys = ""
            return 0, "", ""
        if verb == "describe":
            items = []
            if self.project_ssh_keys:
                items.append({"key": "ssh-keys", "value": self.project_ssh_keys})
            return 0, json.dumps({"commonInstanceMetadata": {"items": items}}), ""
        return 1, "", "bad project-info command"


@pytest.fixture
def fake_gcloud(monkeypatch):
    """Route every gcloud/ssh-keygen call through a FakeGcloud registry."""
    fake = FakeGcloud()
    monkeypatch.setattr("syncdock.provisioning.gcp.run_shell_cmd", fake.run)
    monkeypatch.setattr("syncdock.provisioning.keys.run_shell_cmd", fake.run)
    return fake
