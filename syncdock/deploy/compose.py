"""Docker Compose service definition for Syncthing, built from structured fields."""

from dataclasses import dataclass, field

import yaml

COMPOSE_BIN = "/usr/local/bin/docker-compose"

# Names in the .env file that the compose environment interpolates
USER_ENV_VAR = "SYNCTHING_USER"
PASSWORD_ENV_VAR = "SYNCTHING_PASSWORD"


@dataclass
class Credentials:
    """Web UI login for the Syncthing container."""

    username: str
    password: str

    def __post_init__(self):
        for label, value in (("username", self.username), ("password", self.password)):
            if "\n" in value or "\r" in value:
                raise ValueError(f"GUI {label} must be a single line")
            if "'" in value:
                raise ValueError(f"GUI {label} must not contain a single quote")


@dataclass(frozen=True)
class PortMapping:
    host: int
    container: int
    protocol: str | None = None

    def render(self) -> str:
        mapping = f"{self.host}:{self.container}"
        return f"{mapping}/{self.protocol}" if self.protocol else mapping


@dataclass(frozen=True)
class VolumeMount:
    host: str
    container: str

    def render(self) -> str:
        return f"{self.host}:{self.container}"


@dataclass
class ServiceDefinition:
    """One compose service. Environment keeps insertion order."""

    name: str
    image: str
    container_name: str
    environment: dict[str, str] = field(default_factory=dict)
    volumes: list[VolumeMount] = field(default_factory=list)
    ports: list[PortMapping] = field(default_factory=list)
    restart: str = "unless-stopped"
    user: str | None = None

    def to_dict(self) -> dict:
        body = {
            "image": self.image,
            "container_name": self.container_name,
            "environment": [f"{key}={value}" for key, value in self.environment.items()],
            "volumes": [v.render() for v in self.volumes],
            "ports": [p.render() for p in self.ports],
            "restart": self.restart,
        }
        if self.user is not None:
            body["user"] = self.user
        return body


@dataclass
class ComposeFile:
    services: list[ServiceDefinition] = field(default_factory=list)
    version: str = "3.8"

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "services": {svc.name: svc.to_dict() for svc in self.services},
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)


def _compose_literal(value):
    # Compose interpolates $VAR in environment values; $$ is a literal dollar
    return value.replace("$", "$$")


def build_syncthing_service(service, credentials=None) -> ServiceDefinition:
    """Build the Syncthing service from a ServiceConfig.

    Without credentials, GUI_USER/GUI_PASSWORD reference the .env file
    variables so the operator can set them later without touching the
    compose file.
    """
    if credentials is None:
        gui_user = f"${{{USER_ENV_VAR}}}"
        gui_password = f"${{{PASSWORD_ENV_VAR}}}"
    else:
        gui_user = _compose_literal(credentials.username)
        gui_password = _compose_literal(credentials.password)

    return ServiceDefinition(
        name=service.name,
        image=service.image,
        container_name=service.name,
        environment={
            "PUID": str(service.puid),
            "PGID": str(service.pgid),
            "GUI_USER": gui_user,
            "GUI_PASSWORD": gui_password,
        },
        volumes=[
            VolumeMount(service.config_dir, "/config"),
            VolumeMount(service.data_dir, "/data"),
        ],
        ports=[
            PortMapping(service.web_port, service.web_port),
            PortMapping(service.sync_port, service.sync_port, "tcp"),
            PortMapping(service.discovery_port, service.discovery_port, "udp"),
        ],
        user="root",
    )


def generate_compose(service, credentials=None) -> str:
    """Build docker-compose.yml for the Syncthing service."""
    return ComposeFile(services=[build_syncthing_service(service, credentials)]).to_yaml()


def render_env_file(credentials=None) -> str:
    """Render the .env file read by ``docker-compose --env-file``; values empty when unset.

    Values are single-quoted so compose reads them literally, without $VAR
    expansion or " #" comment stripping.
    """
    username = credentials.username if credentials else ""
    password = credentials.password if credentials else ""
    return f"{USER_ENV_VAR}='{username}'\n{PASSWORD_ENV_VAR}='{password}'\n"


def render_health_check(service) -> str:
    """Script that restarts the container when it is not listed as running."""
    return f"""#!/bin/bash
if ! docker ps | grep -q {service.name}; then
  echo "{service.name} container is not running. Restarting..."
  cd {service.base_dir} && {COMPOSE_BIN} --env-file .env up -d
  echo "Restarted at $(date)" >> {service.base_dir}/restart.log
fi
"""


def health_check_cron_line(service) -> str:
    return f"{service.health_check_schedule} {service.health_check_path}"
