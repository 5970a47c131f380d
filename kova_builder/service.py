"""
Build service with a single worker consuming a bounded job queue.

The worker turns each BuildJob into a deployed stack by running the
pipeline stages in order, persisting every status transition and pushing
it to the status hub. Only one job runs at a time; a failed job is marked
failed, its directories are cleaned up and the worker moves on.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, Protocol, TypeVar

from kova_common.errors import (
    AccountNotFoundError,
    BuildServiceClosedError,
    KovaError,
    ProjectNotFoundError,
    StageTimeoutError,
)
from kova_common.models import BuildJob, DeploymentStatus, Project, StatusEvent
from kova_common.repository import AccountStore, ProjectStore

from .config import BuildConfig
from .pipeline import DeploymentPipeline
from .runner import AsyncioProcessRunner, ProcessRunner

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StatusBroadcaster(Protocol):
    """Anything that can fan a payload out to the subscribers of a project."""

    async def broadcast(self, project_id: str, payload: dict[str, Any]) -> None: ...


class BuildService:
    """
    Single-worker deployment queue.

    Args:
        project_store: Store providing projects and persisting deployment status
        account_store: Store providing the user's linked accounts and tokens
        runner: Process runner for external tools
        hub: Status hub receiving every transition (optional)
        config: Build configuration
        pipeline: Pipeline stages (built from runner and config if omitted)
    """

    def __init__(
        self,
        project_store: ProjectStore,
        account_store: AccountStore,
        runner: ProcessRunner | None = None,
        hub: StatusBroadcaster | None = None,
        config: BuildConfig | None = None,
        pipeline: DeploymentPipeline | None = None,
    ):
        self.project_store = project_store
        self.account_store = account_store
        self.hub = hub
        self.config = config or BuildConfig()
        self.pipeline = pipeline or DeploymentPipeline(
            runner or AsyncioProcessRunner(), self.config
        )

        self._queue: asyncio.Queue[BuildJob] = asyncio.Queue(
            maxsize=self.config.queue_size
        )
        self._stop_event = asyncio.Event()
        self._closed = False
        self._task: asyncio.Task | None = None
        self.current_job: BuildJob | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending_jobs(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start the worker task."""
        if self.is_running:
            logger.warning("Build service already running")
            return
        if self._closed:
            raise BuildServiceClosedError()

        self._task = asyncio.create_task(self._run_loop())
        logger.info("Build service started with 1 worker")

    async def enqueue(self, project_id: str, user_id: str) -> None:
        """
        Queue a deployment of a project.

        Waits while the queue is full; this is backpressure, not an error.

        Raises:
            BuildServiceClosedError: If the service has been shut down
        """
        if self._closed:
            raise BuildServiceClosedError()

        job = BuildJob(project_id=project_id, user_id=user_id)
        await self._queue.put(job)

        if self._closed:
            # Shut down while we were waiting for room; the drain that made
            # room already ran, so our job is still buffered
            self._discard_queued()
            raise BuildServiceClosedError()

        logger.info(
            f"Build job enqueued for project: {project_id} "
            f"({self._queue.qsize()} pending)"
        )

    async def shutdown(self) -> None:
        """
        Stop accepting jobs, let the in-flight job finish, then stop the worker.

        Jobs still waiting in the queue are discarded, not run.
        """
        if self._closed:
            return

        logger.info("Shutting down build service...")
        self._closed = True
        self._stop_event.set()

        if self._task:
            await self._task
            self._task = None

        self._discard_queued()
        logger.info("Build service shut down complete")

    def _discard_queued(self) -> None:
        discarded = 0
        while not self._queue.empty():
            job = self._queue.get_nowait()
            discarded += 1
            logger.warning(f"Discarding queued build job for project {job.project_id}")
        if discarded:
            logger.warning(f"Discarded {discarded} queued build job(s)")

    async def _run_loop(self) -> None:
        """Worker loop: exits on the stop signal, otherwise runs the next job."""
        stop_waiter = asyncio.create_task(self._stop_event.wait())
        try:
            while True:
                get_job = asyncio.create_task(self._queue.get())
                await asyncio.wait(
                    {stop_waiter, get_job}, return_when=asyncio.FIRST_COMPLETED
                )

                if stop_waiter.done():
                    if get_job.done():
                        job = get_job.result()
                        logger.warning(
                            f"Discarding build job for project {job.project_id}: "
                            "shutting down"
                        )
                    else:
                        get_job.cancel()
                    logger.info("Build worker shutting down...")
                    return

                job = get_job.result()
                try:
                    await self.process_job(job)
                except Exception as e:
                    # process_job handles its own failures; this is a last resort
                    logger.error(
                        f"Unhandled error processing project {job.project_id}: {e}",
                        exc_info=True,
                    )
        finally:
            stop_waiter.cancel()

    async def process_job(self, job: BuildJob) -> DeploymentStatus:
        """
        Run the full pipeline for one job.

        Args:
            job: Job to process

        Returns:
            Final status of the run (deployed or failed)
        """
        self.current_job = job
        logger.info(f"Processing build job for project: {job.project_id}")
        logger.info(f"  User ID: {job.user_id}")

        status = DeploymentStatus.PENDING
        stage_started = False
        try:
            project, token = await self._load_job_context(job)

            status = await self._transition(job, status, DeploymentStatus.BUILDING)
            stage_started = True

            repo_path = await self._run_stage(
                "clone", self.pipeline.clone_repository(project, token)
            )
            await self._run_stage("build", self.pipeline.build_image(project, repo_path))

            status = await self._transition(job, status, DeploymentStatus.DEPLOYING)

            await self._run_stage("compose", self.pipeline.generate_compose(project))
            await self._run_stage("deploy", self.pipeline.deploy_stack(project))

            status = await self._transition(job, status, DeploymentStatus.DEPLOYED)
            logger.info(
                f"Build completed successfully for project: {job.project_id} "
                f"(domain: {project.domain})"
            )
            return status

        except Exception as e:
            if isinstance(e, KovaError):
                logger.error(f"Build failed for project {job.project_id}: {e}")
            else:
                logger.error(
                    f"Build failed for project {job.project_id}: {e}", exc_info=True
                )

            if stage_started:
                await self.pipeline.cleanup(job.project_id)

            return await self._transition(job, status, DeploymentStatus.FAILED)

        finally:
            self.current_job = None

    async def _load_job_context(self, job: BuildJob) -> tuple[Project, str]:
        """Fetch the project snapshot and an access token for cloning."""
        project = await self.project_store.get_project_by_id(job.project_id)
        if project is None:
            raise ProjectNotFoundError(job.project_id)
        logger.info(
            f"Project fetched: {project.name} "
            f"(Repo: {project.repository_url}, Branch: {project.branch})"
        )

        accounts = await self.account_store.get_accounts_for_user(job.user_id)
        if not accounts:
            raise AccountNotFoundError(job.user_id)
        logger.info(f"Found {len(accounts)} account(s) for user")

        store = self.account_store
        with_credentials = await store.get_accounts_with_credentials_for_user(
            job.user_id
        )
        account = next((a for a in with_credentials if a.has_token()), None)
        if account is None:
            raise AccountNotFoundError(job.user_id, "no account with access token")
        logger.info(f"Retrieved access token for account: {account.github_username}")

        return project, account.access_token

    async def _run_stage(self, stage: str, coro: Awaitable[T]) -> T:
        """Run one stage, bounded by the configured stage timeout."""
        logger.info(f"Starting {stage} stage")
        timeout = self.config.stage_timeout
        try:
            result = await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise StageTimeoutError(stage, timeout or 0) from e
        logger.info(f"Stage {stage} completed")
        return result

    async def _transition(
        self,
        job: BuildJob,
        current: DeploymentStatus,
        new_status: DeploymentStatus,
    ) -> DeploymentStatus:
        """Persist and broadcast a status change of the job's project."""
        if not current.can_transition_to(new_status):
            raise ValueError(
                f"invalid deployment status transition {current.value} -> {new_status.value}"
            )

        try:
            await self.project_store.update_deployment_status(
                job.project_id, new_status
            )
        except Exception as e:
            logger.error(f"Failed to update deployment status: {e}")

        if self.hub is not None:
            event = StatusEvent(project_id=job.project_id, status=new_status)
            try:
                await self.hub.broadcast(job.project_id, event.to_message())
            except Exception as e:
                logger.error(f"Failed to broadcast deployment status: {e}")

        logger.info(f"Project {job.project_id} status updated to: {new_status.value}")
        return new_status
