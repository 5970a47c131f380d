"""
Configuration for the build worker and the deployment pipeline.

Filesystem roots, the overlay network name and the tool binaries are
injected through BuildConfig instead of being hardcoded in the stages.

Environment Variables:
    KOVA_REPO_BASE_PATH: Root for cloned sources (default: /data/kova/repo)
    KOVA_SERVICES_BASE_PATH: Root for generated descriptors (default: /data/kova/services)
    KOVA_NETWORK_NAME: Shared overlay network (default: proxy)
    KOVA_QUEUE_SIZE: Build queue capacity (default: 100)
    KOVA_STAGE_TIMEOUT: Seconds a stage may run, 0 disables (default: 1800)
    KOVA_APP_PORT: Container port the proxy routes to (default: 3000)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_REPO_BASE_PATH = "/data/kova/repo"
DEFAULT_SERVICES_BASE_PATH = "/data/kova/services"
DEFAULT_NETWORK_NAME = "proxy"
DEFAULT_QUEUE_SIZE = 100
DEFAULT_STAGE_TIMEOUT = 1800.0
DEFAULT_APP_PORT = 3000


@dataclass
class BuildConfig:
    """Settings shared by the build worker, the pipeline stages and the network ensurer."""

    repo_base_path: Path = Path(DEFAULT_REPO_BASE_PATH)
    services_base_path: Path = Path(DEFAULT_SERVICES_BASE_PATH)
    network_name: str = DEFAULT_NETWORK_NAME
    queue_size: int = DEFAULT_QUEUE_SIZE
    stage_timeout: float | None = DEFAULT_STAGE_TIMEOUT
    app_port: int = DEFAULT_APP_PORT
    router_entrypoint: str = "web"
    compose_file_name: str = "docker-compose.yml"
    git_binary: str = "git"
    build_binary: str = "railpack"
    docker_binary: str = "docker"

    def __post_init__(self) -> None:
        self.repo_base_path = Path(self.repo_base_path)
        self.services_base_path = Path(self.services_base_path)
        if self.stage_timeout is not None and self.stage_timeout <= 0:
            self.stage_timeout = None

    def repo_path(self, project_id: str) -> Path:
        """Working directory holding the cloned source of a project."""
        return self.repo_base_path / project_id

    def service_path(self, project_id: str) -> Path:
        """Directory holding the generated deployment descriptor of a project."""
        return self.services_base_path / project_id

    def compose_path(self, project_id: str) -> Path:
        return self.service_path(project_id) / self.compose_file_name

    @classmethod
    def from_env(cls) -> "BuildConfig":
        """
        Build a configuration from KOVA_* environment variables.

        Invalid numeric values are logged and replaced by their defaults.
        """
        return cls(
            repo_base_path=Path(
                os.environ.get("KOVA_REPO_BASE_PATH", DEFAULT_REPO_BASE_PATH)
            ),
            services_base_path=Path(
                os.environ.get("KOVA_SERVICES_BASE_PATH", DEFAULT_SERVICES_BASE_PATH)
            ),
            network_name=os.environ.get("KOVA_NETWORK_NAME", DEFAULT_NETWORK_NAME),
            queue_size=_positive_int_from_env("KOVA_QUEUE_SIZE", DEFAULT_QUEUE_SIZE),
            stage_timeout=_stage_timeout_from_env(),
            app_port=_positive_int_from_env("KOVA_APP_PORT", DEFAULT_APP_PORT),
        )


def _positive_int_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw}, using default {default}")
        return default
    if value <= 0:
        logger.warning(f"Invalid {name}={value}, using default {default}")
        return default
    return value


def _stage_timeout_from_env() -> float | None:
    raw = os.environ.get("KOVA_STAGE_TIMEOUT")
    if raw is None:
        return DEFAULT_STAGE_TIMEOUT
    try:
        timeout = float(raw)
    except ValueError:
        logger.warning(
            f"Invalid KOVA_STAGE_TIMEOUT={raw}, using default {DEFAULT_STAGE_TIMEOUT}"
        )
        return DEFAULT_STAGE_TIMEOUT
    # 0 or negative disables the bound
    return timeout if timeout > 0 else None
