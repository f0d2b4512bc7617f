"""Deployment configuration: fixed resource names shared by provision and teardown."""

import os
from dataclasses import asdict, dataclass, field, fields

import yaml


@dataclass
class FirewallRule:
    """One ingress rule opening a single port to instances carrying the target tag."""

    name: str
    protocol: str
    port: int
    direction: str = "INGRESS"
    priority: int = 1000
    network: str = "default"
    action: str = "ALLOW"

    @property
    def rules(self) -> str:
        """gcloud --rules value, e.g. tcp:8384."""
        return f"{self.protocol}:{self.port}"


def _default_firewall_rules():
    return [
        FirewallRule(name="syncthing-webui", protocol="tcp", port=8384),
        FirewallRule(name="syncthing-sync", protocol="tcp", port=22000),
        FirewallRule(name="syncthing-discovery", protocol="udp", port=21027),
    ]


@dataclass
class InstanceConfig:
    """Compute instance and its static address."""

    name: str = "syncthing-instance"
    zone: str = "us-central1-a"
    machine_type: str = "e2-micro"
    network_tier: str = "PREMIUM"
    tag: str = "syncthing"
    image_family: str = "ubuntu-2204-lts"
    image_project: str = "ubuntu-os-cloud"
    boot_disk_size: str = "30GB"
    boot_disk_type: str = "pd-standard"
    address_name: str = "syncthing-ip"
    region: str | None = None
    ssh_port: int = 22

    @property
    def resolved_region(self) -> str:
        """Region of the address: explicit value, or the zone minus its last segment."""
        if self.region:
            return self.region
        return self.zone.rsplit("-", 1)[0]


@dataclass
class KeyConfig:
    """Local SSH keypair used to reach the instance."""

    directory: str = "~/.ssh/syncthing-deployment"
    filename: str = "syncthing_deploy_key"
    user: str = "ubuntu"
    key_type: str = "rsa"
    bits: int = 2048

    @property
    def private_key_path(self) -> str:
        return os.path.join(os.path.expanduser(self.directory), self.filename)

    @property
    def public_key_path(self) -> str:
        return f"{self.private_key_path}.pub"


@dataclass
class ServiceConfig:
    """Syncthing container and the paths it lives under on the instance."""

    name: str = "syncthing"
    image: str = "lscr.io/linuxserver/syncthing:latest"
    base_dir: str = "/opt/syncthing"
    web_port: int = 8384
    sync_port: int = 22000
    discovery_port: int = 21027
    puid: int = 0
    pgid: int = 0
    health_check_schedule: str = "*/10 * * * *"
    compose_fallback_version: str = "v2.20.3"
    remote_script_path: str = "/tmp/deploy_syncthing.sh"

    @property
    def config_dir(self) -> str:
        return f"{self.base_dir}/config"

    @property
    def data_dir(self) -> str:
        return f"{self.base_dir}/data"

    @property
    def health_check_path(self) -> str:
        return f"{self.base_dir}/check_{self.name}.sh"


@dataclass
class Timings:
    """Fixed waits between steps, in seconds."""

    api_poll_interval: float = 10
    api_enable_timeout: float = 600
    key_propagation_wait: float = 15
    instance_boot_wait: float = 60
    ssh_connect_timeout: int = 10


@dataclass
class DeploymentConfig:
    """Everything a provision or teardown run needs besides the project id."""

    instance: InstanceConfig = field(default_factory=InstanceConfig)
    keys: KeyConfig = field(default_factory=KeyConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)
    timings: Timings = field(default_factory=Timings)
    firewall_rules: list[FirewallRule] = field(default_factory=_default_firewall_rules)
    required_api: str = "compute.googleapis.com"

    @property
    def firewall_rule_names(self) -> list[str]:
        return [rule.name for rule in self.firewall_rules]


def deep_merge(base, override):
    """Recursive dict merge. Override wins for scalars."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _build(cls, data, path):
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown config key(s) in '{path}': {', '.join(unknown)}")
    return cls(**data)


def config_from_dict(data: dict) -> DeploymentConfig:
    """Build a DeploymentConfig from a (defaults-merged) plain dict."""
    data = dict(data)
    rules = data.pop("firewall_rules", None)
    sections = {
        "instance": InstanceConfig,
        "keys": KeyConfig,
        "service": ServiceConfig,
        "timings": Timings,
    }
    kwargs = {}
    for key, cls in sections.items():
        if key in data:
            section = data.pop(key) or {}
            if not isinstance(section, dict):
                raise ValueError(f"Config section '{key}' must be a mapping")
            kwargs[key] = _build(cls, section, key)
    if rules is not None:
        kwargs["firewall_rules"] = [_build(FirewallRule, rule, "firewall_rules") for rule in rules]
    config = _build(DeploymentConfig, data, "<root>")
    for key, value in kwargs.items():
        setattr(config, key, value)
    return config


def load_config(path=None) -> DeploymentConfig:
    """Load the deployment config, deep-merging an optional YAML file over the defaults."""
    if path is None:
        return DeploymentConfig()

    if not os.path.isfile(path):
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        overrides = yaml.safe_load(f) or {}
    if not isinstance(overrides, dict):
        raise ValueError(f"Config file '{path}' must contain a mapping")

    merged = deep_merge(asdict(DeploymentConfig()), overrides)
    return config_from_dict(merged)
