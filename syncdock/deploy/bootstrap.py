"""Second-stage bootstrap script run as root on the instance.

The script frees the e2-micro from the preinstalled Google Cloud SDK,
installs Docker and docker-compose, writes the Syncthing compose project
under the service base directory, starts it, and installs a cron health
check. Every value comes from structured inputs; nothing is patched into
the text afterwards.
"""

import shlex

from syncdock.deploy.compose import (
    COMPOSE_BIN,
    generate_compose,
    health_check_cron_line,
    render_env_file,
    render_health_check,
)
from syncdock.provisioning.retry import RetryPolicy, render_shell_retry_function

GCLOUD_SDK_PACKAGES = [
    "google-cloud-cli",
    "google-cloud-sdk",
    "google-cloud-sdk-gke-gcloud-auth-plugin",
    "google-cloud-sdk-app-engine-python",
    "google-cloud-sdk-app-engine-python-extras",
    "google-cloud-sdk-app-engine-java",
    "google-cloud-sdk-app-engine-go",
    "google-cloud-sdk-bigtable-emulator",
    "google-cloud-sdk-cbt",
    "google-cloud-sdk-cloud-build-local",
    "google-cloud-sdk-datastore-emulator",
    "google-cloud-sdk-firestore-emulator",
    "google-cloud-sdk-pubsub-emulator",
    "google-cloud-sdk-spanner-emulator",
    "google-cloud-sdk-local-extract",
]

GCLOUD_SDK_DIRS = ["/usr/share/google-cloud-sdk", "/usr/lib/google-cloud-sdk", "/opt/google-cloud-sdk"]

APT_LOCKS = ["/var/lib/dpkg/lock*", "/var/lib/apt/lists/lock", "/var/cache/apt/archives/lock"]

COMPOSE_RELEASE_URL = "https://github.com/docker/compose/releases"


def _heredoc(content, target, delimiter):
    """Quoted heredoc: the body is written verbatim, no shell expansion."""
    if any(line == delimiter for line in content.splitlines()):
        raise ValueError(f"Heredoc body contains its delimiter '{delimiter}'")
    body = content if content.endswith("\n") else content + "\n"
    return f"cat <<'{delimiter}' > {target}\n{body}{delimiter}\n"


class BootstrapScript:
    """Builder for the remote deployment script.

    Args:
        config: DeploymentConfig.
        external_ip: static IP of the instance, shown in the final banner.
        credentials: optional Credentials written to the .env file.
        retry_policy: RetryPolicy for package-manager calls.
    """

    def __init__(self, config, external_ip, credentials=None, retry_policy=None):
        self.config = config
        self.service = config.service
        self.external_ip = external_ip
        self.credentials = credentials
        self.retry_policy = retry_policy or RetryPolicy()

    def sections(self):
        """Script sections in execution order."""
        return [
            self._header(),
            self._release_package_manager(),
            self._purge_gcloud_sdk(),
            self._refresh_package_lists(),
            self._retry_function(),
            self._system_update(),
            self._install_docker(),
            self._install_compose(),
            self._create_directories(),
            self._write_compose_project(),
            self._start_service(),
            self._report_resources(),
            self._install_health_check(),
        ]

    def render(self) -> str:
        return "\n".join(self.sections())

    # ── Sections ───────────────────────────────────────────────────

    def _header(self):
        username = self.credentials.username if self.credentials else ""
        return f"""#!/bin/bash
# Enable verbose mode for better logging
set -x

EXTERNAL_IP={shlex.quote(self.external_ip)}
SYNCTHING_USER={shlex.quote(username)}

echo "[+] Starting deployment with these details:"
echo "External IP: $EXTERNAL_IP"
echo "Username: $SYNCTHING_USER"
"""

    def _release_package_manager(self):
        return f"""echo "[+] Checking if running processes might interfere with installation"
ps aux | grep apt
ps aux | grep dpkg

# Force kill any running apt/dpkg processes
sudo killall -9 apt apt-get dpkg 2>/dev/null || true

# Remove any locks
sudo rm -f {" ".join(APT_LOCKS)} 2>/dev/null || true

# Force dpkg to reconfigure
sudo dpkg --configure -a
"""

    def _purge_gcloud_sdk(self):
        packages = " \\\n  ".join(GCLOUD_SDK_PACKAGES)
        return f"""echo "[+] Removing Google Cloud CLI to free e2-micro resources"
sudo rm -rf {" ".join(GCLOUD_SDK_DIRS)} 2>/dev/null || true

for pkg in {packages}; do
  sudo dpkg --force-all --remove $pkg 2>/dev/null || true
done

sudo apt-get remove --purge -y 'google-cloud-*' 2>/dev/null || true
sudo apt-get autoremove -y || true
"""

    def _refresh_package_lists(self):
        return """echo "[+] Cleaning up package system"
sudo apt-get clean
sudo apt-get update || {
  echo "[-] Failed to update package lists, retrying after cleaning sources"
  sudo rm -rf /var/lib/apt/lists/*
  sudo apt-get update
}
"""

    def _retry_function(self):
        return "# Retry a command with exponential backoff\n" + render_shell_retry_function(self.retry_policy)

    def _system_update(self):
        return """echo "[+] Update system and install dependencies"
retry_with_backoff sudo apt-get update -y || exit 1
retry_with_backoff sudo DEBIAN_FRONTEND=noninteractive apt-get upgrade -y || exit 1
retry_with_backoff sudo apt-get install -y curl || exit 1
"""

    def _install_docker(self):
        return """echo "[+] Installing Docker"
if ! command -v docker &> /dev/null; then
  if ! curl -fsSL https://get.docker.com | sudo sh; then
    echo "[-] Docker installation failed. Attempting alternative installation method."
    retry_with_backoff sudo apt-get install -y docker.io || exit 1
  fi
else
  echo "[+] Docker is already installed"
fi

echo "[+] Enabling Docker service"
sudo systemctl enable docker
sudo systemctl start docker

echo "[+] Verifying Docker installation"
if ! sudo docker --version; then
  echo "[-] Docker installation failed"
  exit 1
fi
"""

    def _install_compose(self):
        asset = "docker-compose-$(uname -s)-$(uname -m)"
        fallback = self.service.compose_fallback_version
        return f"""echo "[+] Installing Docker Compose"
if ! command -v docker-compose &> /dev/null; then
  if ! sudo curl -fL "{COMPOSE_RELEASE_URL}/latest/download/{asset}" -o {COMPOSE_BIN}; then
    echo "[-] Failed to download latest Docker Compose. Trying pinned release {fallback}."
    sudo curl -fL "{COMPOSE_RELEASE_URL}/download/{fallback}/{asset}" -o {COMPOSE_BIN}
  fi
  sudo chmod +x {COMPOSE_BIN}
else
  echo "[+] Docker Compose is already installed"
fi

echo "[+] Verifying Docker Compose installation"
if ! sudo {COMPOSE_BIN} --version; then
  echo "[-] Docker Compose installation failed"
  exit 1
fi
"""

    def _create_directories(self):
        svc = self.service
        return f"""echo "[+] Creating directories for {svc.name}"
sudo mkdir -p {svc.config_dir} {svc.data_dir}
sudo chmod -R 775 {svc.base_dir}
"""

    def _write_compose_project(self):
        svc = self.service
        # The compose file references ${SYNCTHING_USER}/${SYNCTHING_PASSWORD};
        # the values only ever live in the .env file.
        compose = generate_compose(svc)
        env = render_env_file(self.credentials)
        return (
            'echo "[+] Creating Docker Compose file"\n'
            + _heredoc(compose, "/tmp/docker-compose.yml", "DOCKER_COMPOSE")
            + f"sudo mv /tmp/docker-compose.yml {svc.base_dir}/docker-compose.yml\n\n"
            + 'echo "[+] Writing environment file for Docker Compose"\n'
            + "(umask 077 && "
            + _heredoc(env, "/tmp/syncthing.env", "ENV").rstrip("\n")
            + "\n)\n"
            + f"sudo mv /tmp/syncthing.env {svc.base_dir}/.env\n"
            + f"sudo chmod 600 {svc.base_dir}/.env\n\n"
            + 'echo "[+] Checking Docker Compose file contents"\n'
            + f"cat {svc.base_dir}/docker-compose.yml\n"
        )

    def _start_service(self):
        svc = self.service
        return f"""echo "[+] Starting {svc.name}"
cd {svc.base_dir}
if ! sudo {COMPOSE_BIN} --env-file .env up -d; then
  echo "[-] Failed to start {svc.name} container. Checking logs:"
  sudo {COMPOSE_BIN} logs
  exit 1
fi

echo "[+] Verifying {svc.name} container is running"
if ! sudo docker ps | grep {svc.name}; then
  echo "[-] {svc.name} container is not running. Checking logs:"
  sudo docker logs {svc.name}
  exit 1
fi

echo "=============================================="
echo "{svc.name} deployment complete!"
echo "Web UI: https://$EXTERNAL_IP:{svc.web_port}"
echo "=============================================="
"""

    def _report_resources(self):
        return """echo "[+] Checking disk space"
df -h

echo "[+] Checking memory usage"
free -m
"""

    def _install_health_check(self):
        svc = self.service
        cron_line = health_check_cron_line(svc)
        return (
            'echo "[+] Creating service check script"\n'
            + _heredoc(render_health_check(svc), "/tmp/check_syncthing.sh", "CHECKSCRIPT")
            + f"sudo mv /tmp/check_syncthing.sh {svc.health_check_path}\n"
            + f"sudo chmod +x {svc.health_check_path}\n\n"
            + 'echo "[+] Setting up monitoring cron job"\n'
            + f'(crontab -l 2>/dev/null; echo "{cron_line}") | sort | uniq | crontab -\n\n'
            + 'echo "[+] All done! Syncthing is deployed and configured."\n'
        )


def render_bootstrap_script(config, external_ip, credentials=None, retry_policy=None) -> str:
    """Render the complete bootstrap script."""
    return BootstrapScript(config, external_ip, credentials, retry_policy).render()
