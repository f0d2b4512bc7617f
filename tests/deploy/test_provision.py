"""Provisioning workflow against the in-memory gcloud registry."""

import pytest

from syncdock.deploy.compose import Credentials
from syncdock.deploy.provision import ensure_resource, make_bootstrap_step, run_provision
from syncdock.deploy.workflow import RunState, StepFailed
from syncdock.provisioning.retry import RetryOutcome, RetryPolicy, RetryResult

FAST = RetryPolicy(max_attempts=2, base_delay=0)


async def _no_sleep(seconds):
    pass


# ── ensure_resource ─────────────────────────────────────────────


async def test_ensure_resource_skips_existing():
    created = []

    async def exists():
        return True

    async def create():
        created.append(1)
        return True

    assert await ensure_resource("thing", "x", exists, create) is False
    assert created == []


async def test_ensure_resource_create_failure_is_fatal():
    async def exists():
        return False

    async def create():
        return False

    with pytest.raises(StepFailed, match="Failed to create thing 'x'"):
        await ensure_resource("thing", "x", exists, create)


async def test_ensure_resource_verifies_after_create():
    async def exists():
        return False

    async def create():
        return True

    with pytest.raises(StepFailed, match="not found after creation"):
        await ensure_resource("thing", "x", exists, create)


# ── Cloud resources ─────────────────────────────────────────────


async def test_provision_creates_every_resource(config, state, fake_gcloud):
    await run_provision(config, state, bootstrap=False)

    assert "compute.googleapis.com" in fake_gcloud.enabled_apis
    assert set(fake_gcloud.addresses) == {"syncthing-ip"}
    assert set(fake_gcloud.instances) == {"syncthing-instance"}
    assert set(fake_gcloud.firewall_rules) == {"syncthing-webui", "syncthing-sync", "syncthing-discovery"}
    assert state.ip_address == "203.0.113.10"

    create = fake_gcloud.instances["syncthing-instance"]["command"]
    assert "--address=203.0.113.10" in create
    assert "--metadata=ssh-keys=ubuntu:ssh-rsa AAAAFAKEKEY ubuntu@syncdock" in create


async def test_provision_twice_creates_no_duplicates(config, fake_gcloud):
    await run_provision(config, RunState("demo-project"), bootstrap=False)
    second = RunState("demo-project")
    await run_provision(config, second, bootstrap=False)

    assert fake_gcloud.count("addresses", "create") == 1
    assert fake_gcloud.count("instances", "create") == 1
    assert fake_gcloud.count("firewall-rules", "create") == 3
    assert fake_gcloud.count("project-info", "add-metadata") == 1
    assert second.created == []
    assert second.ip_address == "203.0.113.10"


async def test_existing_instance_gets_current_key(config, fake_gcloud):
    await run_provision(config, RunState("demo-project"), bootstrap=False)
    await run_provision(config, RunState("demo-project"), bootstrap=False)

    assert fake_gcloud.count("instances", "add-metadata") == 1
    keys = fake_gcloud.instances["syncthing-instance"]["ssh-keys"]
    assert keys.strip() == "ubuntu:ssh-rsa AAAAFAKEKEY ubuntu@syncdock"


async def test_exists_create_exists_for_all_names(config, state, fake_gcloud):
    assert not fake_gcloud.addresses and not fake_gcloud.instances and not fake_gcloud.firewall_rules

    await run_provision(config, state, bootstrap=False)

    region = config.instance.resolved_region
    assert (await fake_gcloud.run(["gcloud", "compute", "addresses", "describe", "syncthing-ip", f"--region={region}"]))[0] == 0
    assert (await fake_gcloud.run(["gcloud", "compute", "instances", "describe", "syncthing-instance", "--zone=us-central1-a"]))[0] == 0
    for name in config.firewall_rule_names:
        assert (await fake_gcloud.run(["gcloud", "compute", "firewall-rules", "describe", name]))[0] == 0


async def test_creation_failure_aborts_remaining_steps(config, state, fake_gcloud):
    fake_gcloud.fail_on.add(("instances", "create", "syncthing-instance"))

    with pytest.raises(StepFailed, match="instance 'syncthing-instance'"):
        await run_provision(config, state, bootstrap=False)

    # Earlier resources stay; later ones are never attempted
    assert set(fake_gcloud.addresses) == {"syncthing-ip"}
    assert fake_gcloud.count("firewall-rules", "describe") == 0
    assert "address:syncthing-ip" in state.created


async def test_resume_after_failure(config, fake_gcloud):
    fake_gcloud.fail_on.add(("firewall-rules", "create", "syncthing-sync"))
    with pytest.raises(StepFailed):
        await run_provision(config, RunState("demo-project"), bootstrap=False)

    fake_gcloud.fail_on.clear()
    await run_provision(config, RunState("demo-project"), bootstrap=False)

    assert fake_gcloud.count("instances", "create") == 1
    assert set(fake_gcloud.firewall_rules) == {"syncthing-webui", "syncthing-sync", "syncthing-discovery"}


async def test_api_enable_times_out(config, state, fake_gcloud, monkeypatch):
    async def never_enabled(api, project=None):
        return False

    monkeypatch.setattr("syncdock.provisioning.gcp.api_enabled", never_enabled)
    with pytest.raises(StepFailed, match="Timeout"):
        await run_provision(config, state, bootstrap=False)


async def test_api_enable_timeout_holds_with_zero_poll_interval(config, state, fake_gcloud, monkeypatch):
    polls = []

    async def never_enabled(api, project=None):
        polls.append(api)
        return False

    monkeypatch.setattr("syncdock.provisioning.gcp.api_enabled", never_enabled)
    config.timings.api_poll_interval = 0
    config.timings.api_enable_timeout = 0.05
    with pytest.raises(StepFailed, match="Timeout"):
        await run_provision(config, state, bootstrap=False)
    assert len(polls) >= 2


async def test_dry_run_touches_nothing(config, fake_gcloud):
    state = RunState("demo-project", dry_run=True)
    await run_provision(config, state, bootstrap=False)

    assert not fake_gcloud.addresses and not fake_gcloud.instances and not fake_gcloud.firewall_rules
    assert state.ip_address


# ── Remote bootstrap ────────────────────────────────────────────


class FakeTransport:
    def __init__(self, ssh_ok=True, script_rc=0):
        self.ssh_ok = ssh_ok
        self.script_rc = script_rc
        self.copied = None
        self.commands = []
        self.ports = []

    async def wait_for_ssh(self, server, ssh_key, ssh_port=22, connect_timeout=10, policy=None, sleep=None, dry_run=False):
        self.ports.append(ssh_port)
        if self.ssh_ok:
            return RetryResult(RetryOutcome.SUCCEEDED, 0, 1)
        return RetryResult(RetryOutcome.EXHAUSTED, 255, 2, stderr="Connection refused")

    async def scp_file(self, local_path, server, ssh_key, remote_path, ssh_port=22, timeout=300, dry_run=False):
        self.ports.append(ssh_port)
        with open(local_path) as f:
            self.copied = (f.read(), server, remote_path)
        return 0, "", ""

    async def run_ssh(self, server, ssh_key, command, ssh_port=22, log_output=False, dry_run=False, **kwargs):
        self.ports.append(ssh_port)
        self.commands.append((server, command))
        return self.script_rc, "", ""


@pytest.fixture
def transport(monkeypatch):
    fake = FakeTransport()
    monkeypatch.setattr("syncdock.deploy.provision.wait_for_ssh", fake.wait_for_ssh)
    monkeypatch.setattr("syncdock.deploy.provision.scp_file", fake.scp_file)
    monkeypatch.setattr("syncdock.deploy.provision.run_ssh", fake.run_ssh)
    return fake


async def test_bootstrap_copies_and_runs_script(config, state, fake_gcloud, transport):
    await run_provision(config, state, credentials=Credentials("alice", "hunter2"), retry_policy=FAST, sleep=_no_sleep)

    script, server, remote_path = transport.copied
    assert server == "ubuntu@203.0.113.10"
    assert remote_path == "/tmp/deploy_syncthing.sh"
    assert "EXTERNAL_IP=203.0.113.10" in script
    assert "SYNCTHING_PASSWORD='hunter2'" in script
    assert transport.commands == [
        ("ubuntu@203.0.113.10", "chmod +x /tmp/deploy_syncthing.sh && sudo /tmp/deploy_syncthing.sh"),
    ]
    assert transport.ports == [22, 22, 22]


async def test_bootstrap_ssh_failure_is_fatal(config, fake_gcloud, transport):
    transport.ssh_ok = False
    state = RunState("demo-project", ip_address="203.0.113.10")
    fake_gcloud.instances["syncthing-instance"] = {}

    step = make_bootstrap_step(retry_policy=FAST, sleep=_no_sleep)
    with pytest.raises(StepFailed, match="instance status: RUNNING"):
        await step(config, state)
    assert transport.copied is None


async def test_bootstrap_script_failure_is_fatal(config, fake_gcloud, transport):
    transport.script_rc = 1
    state = RunState("demo-project", ip_address="203.0.113.10")

    step = make_bootstrap_step(retry_policy=FAST, sleep=_no_sleep)
    with pytest.raises(StepFailed, match="exit code 1"):
        await step(config, state)


async def test_bootstrap_uses_configured_ssh_port(config, fake_gcloud, transport):
    config.instance.ssh_port = 2222
    state = RunState("demo-project", ip_address="203.0.113.10")

    await make_bootstrap_step(retry_policy=FAST, sleep=_no_sleep)(config, state)

    assert transport.ports == [2222, 2222, 2222]
