"""Unit tests for the Syncthing service definition and its companion files."""

import pytest
import yaml

from syncdock.config import ServiceConfig
from syncdock.deploy.compose import (
    ComposeFile,
    Credentials,
    PortMapping,
    build_syncthing_service,
    generate_compose,
    health_check_cron_line,
    render_env_file,
    render_health_check,
)


def _environment(compose_text):
    parsed = yaml.safe_load(compose_text)
    return parsed["services"]["syncthing"]["environment"]


class TestGenerateCompose:
    def test_parses_as_valid_yaml(self):
        parsed = yaml.safe_load(generate_compose(ServiceConfig()))
        assert parsed["version"] == "3.8"
        svc = parsed["services"]["syncthing"]
        assert svc["image"] == "lscr.io/linuxserver/syncthing:latest"
        assert svc["container_name"] == "syncthing"
        assert svc["restart"] == "unless-stopped"
        assert svc["user"] == "root"

    def test_volumes_and_ports(self):
        svc = yaml.safe_load(generate_compose(ServiceConfig()))["services"]["syncthing"]
        assert svc["volumes"] == ["/opt/syncthing/config:/config", "/opt/syncthing/data:/data"]
        assert svc["ports"] == ["8384:8384", "22000:22000/tcp", "21027:21027/udp"]

    def test_placeholders_without_credentials(self):
        assert _environment(generate_compose(ServiceConfig())) == [
            "PUID=0",
            "PGID=0",
            "GUI_USER=${SYNCTHING_USER}",
            "GUI_PASSWORD=${SYNCTHING_PASSWORD}",
        ]

    def test_credentials_substituted_and_nothing_else_changes(self):
        base = yaml.safe_load(generate_compose(ServiceConfig()))
        with_creds = yaml.safe_load(generate_compose(ServiceConfig(), Credentials("alice", "hunter2")))

        env = with_creds["services"]["syncthing"]["environment"]
        assert env == ["PUID=0", "PGID=0", "GUI_USER=alice", "GUI_PASSWORD=hunter2"]

        base_svc = base["services"]["syncthing"]
        creds_svc = with_creds["services"]["syncthing"]
        for key in base_svc:
            if key != "environment":
                assert creds_svc[key] == base_svc[key]
        changed = [a for a, b in zip(base_svc["environment"], env) if a != b]
        assert changed == ["GUI_USER=${SYNCTHING_USER}", "GUI_PASSWORD=${SYNCTHING_PASSWORD}"]

    def test_dollar_in_password_is_escaped_for_compose(self):
        env = _environment(generate_compose(ServiceConfig(), Credentials("alice", "pa$$word")))
        assert "GUI_PASSWORD=pa$$$$word" in env

    def test_custom_service_config(self):
        service = ServiceConfig(image="syncthing/syncthing:1.27", base_dir="/srv/sync", web_port=9384)
        svc = yaml.safe_load(generate_compose(service))["services"]["syncthing"]
        assert svc["image"] == "syncthing/syncthing:1.27"
        assert svc["volumes"][0] == "/srv/sync/config:/config"
        assert svc["ports"][0] == "9384:9384"


class TestBuilder:
    def test_port_mapping_render(self):
        assert PortMapping(8384, 8384).render() == "8384:8384"
        assert PortMapping(21027, 21027, "udp").render() == "21027:21027/udp"

    def test_compose_file_keeps_service_order(self):
        a = build_syncthing_service(ServiceConfig(name="a"))
        b = build_syncthing_service(ServiceConfig(name="b"))
        assert list(ComposeFile(services=[a, b]).to_dict()["services"]) == ["a", "b"]

    def test_multiline_credentials_rejected(self):
        with pytest.raises(ValueError, match="single line"):
            Credentials("alice", "line1\nline2")

    def test_single_quote_rejected(self):
        with pytest.raises(ValueError, match="single quote"):
            Credentials("alice", "it's")


class TestCompanionFiles:
    def test_env_file_with_credentials(self):
        assert render_env_file(Credentials("alice", "hunter2")) == "SYNCTHING_USER='alice'\nSYNCTHING_PASSWORD='hunter2'\n"

    def test_env_file_values_are_literal(self):
        env = render_env_file(Credentials("alice", "pa$word #1 "))
        assert env.splitlines()[1] == "SYNCTHING_PASSWORD='pa$word #1 '"

    def test_env_file_unset(self):
        assert render_env_file() == "SYNCTHING_USER=''\nSYNCTHING_PASSWORD=''\n"

    def test_health_check_restarts_container(self):
        script = render_health_check(ServiceConfig())
        assert script.startswith("#!/bin/bash")
        assert "docker ps | grep -q syncthing" in script
        assert "cd /opt/syncthing && /usr/local/bin/docker-compose --env-file .env up -d" in script
        assert ">> /opt/syncthing/restart.log" in script

    def test_cron_line(self):
        assert health_check_cron_line(ServiceConfig()) == "*/10 * * * * /opt/syncthing/check_syncthing.sh"
