"""
Deployment pipeline stages.

Each stage is one orchestration step over the process runner plus project
data: clone the repository, build an image, render the compose descriptor
and deploy it as a swarm stack. A stage either completes or raises a
StageError; the build worker then removes everything created for the
project via cleanup().
"""

import asyncio
import logging
import shutil
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError

from kova_common.errors import (
    BuildError,
    BuilderUnavailableError,
    CloneError,
    ComposeError,
    DeployError,
)
from kova_common.models import Project

from .config import BuildConfig
from .network import NetworkEnsurer
from .runner import ProcessRunner, RunningProcess

logger = logging.getLogger(__name__)

# Builder stderr fragments meaning the buildkit backend is unreachable
BUILDKIT_ENV_MISSING = "BUILDKIT_HOST environment variable is not set."
BUILDKIT_UNABLE_TO_CONNECT = "ERRO failed to get buildkit information."
BUILDER_UNAVAILABLE_SENTINELS = (BUILDKIT_ENV_MISSING, BUILDKIT_UNABLE_TO_CONNECT)

COMPOSE_TEMPLATE = "docker-compose.yml.j2"
_TEMPLATE_DIR = Path(__file__).parent / "templates"


def build_authenticated_url(repository_url: str, token: str) -> str:
    """Embed an access token in an https clone URL."""
    if not token:
        return repository_url
    return repository_url.replace("https://", f"https://{token}@", 1)


def redact(text: str, secret: str) -> str:
    """Remove a secret from text that may end up in logs or errors."""
    if not secret:
        return text
    return text.replace(secret, "[REDACTED]")


class DeploymentPipeline:
    """
    The four pipeline stages and the cleanup step.

    Args:
        runner: Process runner for git, the builder and docker
        config: Paths, network name and binaries
        network_ensurer: Ensurer for the overlay network (created from config if omitted)
    """

    def __init__(
        self,
        runner: ProcessRunner,
        config: BuildConfig | None = None,
        network_ensurer: NetworkEnsurer | None = None,
    ):
        self.runner = runner
        self.config = config or BuildConfig()
        self.network_ensurer = network_ensurer or NetworkEnsurer(
            runner,
            network_name=self.config.network_name,
            docker_binary=self.config.docker_binary,
        )
        self.template_env = Environment(
            loader=FileSystemLoader(str(_TEMPLATE_DIR)),
            keep_trailing_newline=True,
            undefined=StrictUndefined,
        )

    async def clone_repository(self, project: Project, token: str) -> Path:
        """
        Clone the project's branch into its working directory.

        Args:
            project: Project to clone
            token: Access token embedded in the clone URL

        Returns:
            Path of the working directory

        Raises:
            CloneError: If the directory can't be prepared or git fails
        """
        repo_path = self.config.repo_path(project.id)
        logger.info(
            f"Cloning {project.repository_url} (branch: {project.branch}) into {repo_path}"
        )

        try:
            if repo_path.exists():
                # Left over from a previous deployment of this project
                await asyncio.to_thread(shutil.rmtree, repo_path)
            repo_path.mkdir(parents=True)
        except OSError as e:
            raise CloneError(f"failed to create repo directory: {e}") from e

        auth_url = build_authenticated_url(project.repository_url, token)
        logger.info(
            f"Executing: git clone -b {project.branch} --single-branch "
            f"[REPO_URL] {repo_path}"
        )

        try:
            result = await self.runner.run(
                [
                    self.config.git_binary,
                    "clone",
                    "-b",
                    project.branch,
                    "--single-branch",
                    auth_url,
                    str(repo_path),
                ],
                env={"GIT_TERMINAL_PROMPT": "0"},
            )
        except OSError as e:
            raise CloneError(f"failed to run git: {e}") from e

        output = redact(result.output, token)
        if not result.ok:
            raise CloneError(f"git clone exited with {result.returncode}: {output}")

        logger.info(f"Repository cloned to {repo_path}")
        return repo_path

    async def build_image(self, project: Project, repo_path: Path) -> None:
        """
        Build the project image with the builder CLI.

        stdout is logged as it arrives. stderr is scanned line by line for
        the builder-unavailable sentinels; on a match the build is killed.

        Raises:
            BuilderUnavailableError: If a sentinel line was seen
            BuildError: If the builder can't be started, its output can't be read
                or it exits non-zero
        """
        args = [self.config.build_binary, "build", ".", "--name", project.id]
        for env in project.env_variables:
            if env.key and env.value:
                args.extend(["--env", f"{env.key}={env.value}"])
                logger.info(f"  build env {env.key}={env.to_dict()['value']}")

        logger.info(
            f"Building image {project.id}:latest in {repo_path} "
            f"({len(project.env_variables)} env variables)"
        )

        try:
            process = await self.runner.start(args, cwd=repo_path)
        except OSError as e:
            raise BuildError(f"failed to start builder: {e}") from e

        stdout_task = asyncio.create_task(self._log_stdout(process))
        try:
            sentinel_line = await self._scan_stderr(process)
            if sentinel_line is not None:
                logger.error(f"Builder backend unavailable: {sentinel_line}")
                process.kill()
            returncode = await process.wait()
        except BaseException as e:
            # Cancelled, timed out or the output couldn't be read
            process.kill()
            await process.wait()
            if isinstance(e, Exception):
                raise BuildError(f"failed to read builder output: {e!r}") from e
            raise
        finally:
            await self._finish_stdout(stdout_task)

        if sentinel_line is not None:
            raise BuilderUnavailableError(
                f"builder backend unavailable: {sentinel_line}"
            )
        if returncode != 0:
            raise BuildError(f"builder exited with {returncode}")

        logger.info(f"Image created: {project.id}:latest")

    async def _log_stdout(self, process: RunningProcess) -> None:
        async for line in process.stdout_lines():
            logger.info(f"[build stdout] {line}")

    async def _finish_stdout(self, stdout_task: asyncio.Task) -> None:
        if not stdout_task.done():
            stdout_task.cancel()
        try:
            await stdout_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"Failed to read builder stdout: {e!r}")

    async def _scan_stderr(self, process: RunningProcess) -> str | None:
        """Log stderr and return the first sentinel line, or None at EOF."""
        async for line in process.stderr_lines():
            logger.info(f"[build stderr] {line}")
            if any(sentinel in line for sentinel in BUILDER_UNAVAILABLE_SENTINELS):
                return line
        return None

    def render_compose(self, project: Project) -> str:
        """Render the stack descriptor for a project."""
        template = self.template_env.get_template(COMPOSE_TEMPLATE)
        return template.render(
            project_id=project.id,
            domain=project.domain,
            port=project.port or self.config.app_port,
            network_name=self.config.network_name,
            entrypoint=self.config.router_entrypoint,
        )

    async def generate_compose(self, project: Project) -> Path:
        """
        Write the stack descriptor into the project's service directory.

        Returns:
            Path of the written descriptor

        Raises:
            ComposeError: If rendering or writing fails
        """
        compose_path = self.config.compose_path(project.id)
        logger.info(
            f"Generating {compose_path.name} for {project.id} (domain: {project.domain})"
        )

        try:
            content = self.render_compose(project)
        except TemplateError as e:
            raise ComposeError(f"failed to render template: {e}") from e

        try:
            compose_path.parent.mkdir(parents=True, exist_ok=True)
            compose_path.write_text(content)
        except OSError as e:
            raise ComposeError(f"failed to write {compose_path}: {e}") from e

        logger.info(f"Compose descriptor written to {compose_path}")
        return compose_path

    async def deploy_stack(self, project: Project) -> None:
        """
        Deploy the project's descriptor as a swarm stack named after the project.

        Raises:
            NetworkError: If the overlay network can't be ensured
            DeployError: If the descriptor is missing or the deploy fails
        """
        await self.network_ensurer.ensure_network()

        compose_path = self.config.compose_path(project.id)
        if not compose_path.is_file():
            raise DeployError(f"compose file not found: {compose_path}")

        logger.info(f"Executing: docker stack deploy -c {compose_path} {project.id}")
        try:
            result = await self.runner.run(
                [
                    self.config.docker_binary,
                    "stack",
                    "deploy",
                    "-c",
                    str(compose_path),
                    project.id,
                ]
            )
        except OSError as e:
            raise DeployError(f"failed to run docker: {e}") from e

        if not result.ok:
            raise DeployError(
                f"docker stack deploy exited with {result.returncode}, "
                f"output: {result.output}"
            )

        logger.info(f"Stack {project.id} deployed: {result.output.strip()}")

    async def cleanup(self, project_id: str) -> None:
        """
        Remove the working and service directories of a project.

        This is a best-effort operation that won't raise exceptions. Trees
        are removed in a worker thread so the event loop keeps serving.
        """
        logger.info(f"Cleaning up failed build: {project_id}")
        for path in (
            self.config.repo_path(project_id),
            self.config.service_path(project_id),
        ):
            if not path.exists():
                continue
            try:
                await asyncio.to_thread(shutil.rmtree, path)
            except OSError as e:
                logger.warning(f"Failed to remove {path}: {e}")
