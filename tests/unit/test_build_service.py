"""
Unit tests for kova_builder.service module.

The stores and the hub are AsyncMocks; external tools are emulated by
FakeRunner. Status transitions are observed through the calls made to
update_deployment_status.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from kova_builder.config import BuildConfig
from kova_builder.pipeline import DeploymentPipeline
from kova_builder.runner import ProcessResult
from kova_builder.service import BuildService
from kova_common.errors import BuildServiceClosedError
from kova_common.models import (
    Account,
    BuildJob,
    DeploymentStatus,
    EnvironmentVariable,
    Project,
)
from tests.unit.fakes import FakeProcess, FakeRunner


def make_project(project_id: str = "p1", **kwargs) -> Project:
    defaults = dict(
        name="demo",
        user_id="u1",
        repository_url="https://github.com/acme/demo.git",
        domain=f"{project_id}.example.com",
        env_variables=[EnvironmentVariable("NODE_ENV", "production")],
    )
    defaults.update(kwargs)
    return Project(id=project_id, **defaults)


def observed_statuses(project_store, project_id: str = "p1") -> list[DeploymentStatus]:
    return [
        c.args[1]
        for c in project_store.update_deployment_status.await_args_list
        if c.args[0] == project_id
    ]


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll until predicate() is true."""
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=timeout)


@pytest.fixture
def config(tmp_path):
    return BuildConfig(
        repo_base_path=tmp_path / "repo",
        services_base_path=tmp_path / "services",
        stage_timeout=5,
    )


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def project_store():
    store = AsyncMock()
    projects = {"p1": make_project("p1"), "p2": make_project("p2"), "p3": make_project("p3")}
    store.get_project_by_id.side_effect = lambda project_id: projects.get(project_id)
    return store


@pytest.fixture
def account_store():
    store = AsyncMock()
    store.get_accounts_for_user.return_value = [
        Account(id="a1", user_id="u1", github_username="octocat")
    ]
    store.get_accounts_with_credentials_for_user.return_value = [
        Account(id="a1", user_id="u1", github_username="octocat", access_token="ghp_token")
    ]
    return store


@pytest.fixture
def hub():
    return AsyncMock()


@pytest.fixture
def service(project_store, account_store, runner, hub, config):
    return BuildService(project_store, account_store, runner=runner, hub=hub, config=config)


class TestProcessJob:
    """Test suite for running one job through the pipeline."""

    @pytest.mark.asyncio
    async def test_successful_deployment(self, service, project_store, hub, runner, config):
        """Test a job walks building -> deploying -> deployed."""
        status = await service.process_job(BuildJob("p1", "u1"))

        assert status is DeploymentStatus.DEPLOYED
        assert observed_statuses(project_store) == [
            DeploymentStatus.BUILDING,
            DeploymentStatus.DEPLOYING,
            DeploymentStatus.DEPLOYED,
        ]
        assert [c.args for c in hub.broadcast.await_args_list] == [
            ("p1", {"type": "deployment_status", "status": "building"}),
            ("p1", {"type": "deployment_status", "status": "deploying"}),
            ("p1", {"type": "deployment_status", "status": "deployed"}),
        ]
        assert config.repo_path("p1").is_dir()
        assert config.compose_path("p1").is_file()
        assert [c[:3] for c in runner.calls if c[0] != "docker" or c[1] != "network"] == [
            ["git", "clone", "-b"],
            ["railpack", "build", "."],
            ["docker", "stack", "deploy"],
        ]
        assert service.current_job is None

    @pytest.mark.asyncio
    async def test_invalid_repository_url(self, service, project_store, hub, runner, config):
        """Test a clone failure marks the project failed and removes its directories."""
        runner.clone_result = ProcessResult(
            128, "fatal: repository 'https://ghp_token@invalid/' not found\n"
        )

        status = await service.process_job(BuildJob("p1", "u1"))

        assert status is DeploymentStatus.FAILED
        assert observed_statuses(project_store) == [
            DeploymentStatus.BUILDING,
            DeploymentStatus.FAILED,
        ]
        assert [c.args[1]["status"] for c in hub.broadcast.await_args_list] == [
            "building",
            "failed",
        ]
        assert not config.repo_path("p1").exists()
        assert not config.service_path("p1").exists()
        assert runner.commands("railpack") == []
        assert runner.commands("docker", "stack", "deploy") == []

    @pytest.mark.asyncio
    async def test_build_failure_skips_deploy(self, service, project_store, runner, config):
        runner.build_process = lambda: FakeProcess(returncode=1)

        status = await service.process_job(BuildJob("p1", "u1"))

        assert status is DeploymentStatus.FAILED
        assert observed_statuses(project_store) == [
            DeploymentStatus.BUILDING,
            DeploymentStatus.FAILED,
        ]
        assert runner.commands("docker", "stack", "deploy") == []
        assert not config.repo_path("p1").exists()

    @pytest.mark.asyncio
    async def test_deploy_failure_after_deploying(self, service, project_store, runner, config):
        runner.deploy_result = ProcessResult(1, "this node is not a swarm manager\n")

        status = await service.process_job(BuildJob("p1", "u1"))

        assert status is DeploymentStatus.FAILED
        assert observed_statuses(project_store) == [
            DeploymentStatus.BUILDING,
            DeploymentStatus.DEPLOYING,
            DeploymentStatus.FAILED,
        ]
        assert not config.service_path("p1").exists()

    @pytest.mark.asyncio
    async def test_project_not_found(self, service, project_store, account_store, runner):
        """Test a missing project fails the job before any stage runs."""
        status = await service.process_job(BuildJob("missing", "u1"))

        assert status is DeploymentStatus.FAILED
        assert observed_statuses(project_store, "missing") == [DeploymentStatus.FAILED]
        account_store.get_accounts_for_user.assert_not_awaited()
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_no_accounts(self, service, project_store, account_store, runner):
        account_store.get_accounts_for_user.return_value = []

        status = await service.process_job(BuildJob("p1", "u1"))

        assert status is DeploymentStatus.FAILED
        assert observed_statuses(project_store) == [DeploymentStatus.FAILED]
        account_store.get_accounts_with_credentials_for_user.assert_not_awaited()
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_no_account_with_token(self, service, project_store, account_store, runner):
        account_store.get_accounts_with_credentials_for_user.return_value = [
            Account(id="a1", user_id="u1", github_username="octocat")
        ]

        status = await service.process_job(BuildJob("p1", "u1"))

        assert status is DeploymentStatus.FAILED
        assert observed_statuses(project_store) == [DeploymentStatus.FAILED]
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_stage_timeout(self, project_store, account_store, runner, hub, tmp_path):
        """Test a hung stage is abandoned and the job fails."""
        config = BuildConfig(
            repo_base_path=tmp_path / "repo",
            services_base_path=tmp_path / "services",
            stage_timeout=0.05,
        )
        runner.clone_gate = asyncio.Event()  # never set
        service = BuildService(
            project_store, account_store, runner=runner, hub=hub, config=config
        )

        status = await service.process_job(BuildJob("p1", "u1"))

        assert status is DeploymentStatus.FAILED
        assert observed_statuses(project_store) == [
            DeploymentStatus.BUILDING,
            DeploymentStatus.FAILED,
        ]
        assert not config.repo_path("p1").exists()

    @pytest.mark.asyncio
    async def test_store_error_does_not_stop_pipeline(self, service, project_store, hub):
        """Test persistence and broadcast failures are logged, not fatal."""
        project_store.update_deployment_status.side_effect = RuntimeError("db locked")
        hub.broadcast.side_effect = RuntimeError("hub stopped")

        status = await service.process_job(BuildJob("p1", "u1"))

        assert status is DeploymentStatus.DEPLOYED

    @pytest.mark.asyncio
    async def test_without_hub(self, project_store, account_store, runner, config):
        service = BuildService(project_store, account_store, runner=runner, config=config)

        status = await service.process_job(BuildJob("p1", "u1"))

        assert status is DeploymentStatus.DEPLOYED


class TestWorker:
    """Test suite for the queue and the worker lifecycle."""

    @pytest.mark.asyncio
    async def test_enqueued_job_runs(self, service, project_store):
        await service.start()
        await service.enqueue("p1", "u1")

        await wait_until(
            lambda: DeploymentStatus.DEPLOYED in observed_statuses(project_store)
        )
        await service.shutdown()

        assert service.is_running is False

    @pytest.mark.asyncio
    async def test_one_job_at_a_time(self, service, project_store, runner):
        """Test a second job doesn't start while the first is in its clone stage."""
        runner.clone_gate = asyncio.Event()
        await service.start()
        await service.enqueue("p1", "u1")
        await service.enqueue("p2", "u1")

        await asyncio.wait_for(runner.clone_started.wait(), timeout=2)
        await asyncio.sleep(0.05)

        assert len(runner.commands("git", "clone")) == 1
        assert service.current_job == BuildJob("p1", "u1")
        assert service.pending_jobs == 1

        runner.clone_gate.set()
        await wait_until(
            lambda: DeploymentStatus.DEPLOYED in observed_statuses(project_store, "p2")
        )
        await service.shutdown()

        assert len(runner.commands("git", "clone")) == 2

    @pytest.mark.asyncio
    async def test_jobs_run_in_order(self, project_store, account_store, runner, hub, config):
        order = []

        class RecordingPipeline(DeploymentPipeline):
            async def clone_repository(self, project, token):
                order.append(project.id)
                return await super().clone_repository(project, token)

        service = BuildService(
            project_store,
            account_store,
            hub=hub,
            config=config,
            pipeline=RecordingPipeline(runner, config),
        )
        for project_id in ("p3", "p1", "p2"):
            await service.enqueue(project_id, "u1")
        await service.start()

        await wait_until(lambda: len(order) == 3 and service.pending_jobs == 0)
        await wait_until(
            lambda: DeploymentStatus.DEPLOYED in observed_statuses(project_store, "p2")
        )
        await service.shutdown()

        assert order == ["p3", "p1", "p2"]

    @pytest.mark.asyncio
    async def test_failed_job_does_not_stop_worker(self, service, project_store):
        await service.start()
        await service.enqueue("missing", "u1")
        await service.enqueue("p1", "u1")

        await wait_until(
            lambda: DeploymentStatus.DEPLOYED in observed_statuses(project_store)
        )
        await service.shutdown()

        assert observed_statuses(project_store, "missing") == [DeploymentStatus.FAILED]

    @pytest.mark.asyncio
    async def test_full_queue_blocks_enqueue(self, project_store, account_store, runner, tmp_path):
        """Test the call past capacity waits until the worker frees a slot."""
        config = BuildConfig(
            repo_base_path=tmp_path / "repo",
            services_base_path=tmp_path / "services",
            queue_size=100,
        )
        service = BuildService(project_store, account_store, runner=runner, config=config)

        for _ in range(100):
            await service.enqueue("missing", "u1")
        assert service.pending_jobs == 100

        blocked = asyncio.create_task(service.enqueue("p1", "u1"))
        await asyncio.sleep(0.05)
        assert not blocked.done()

        await service.start()
        await asyncio.wait_for(blocked, timeout=2)

        await wait_until(
            lambda: DeploymentStatus.DEPLOYED in observed_statuses(project_store)
        )
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_finishes_in_flight_job(self, service, project_store, runner):
        """Test shutdown waits for the running job and discards queued ones."""
        runner.clone_gate = asyncio.Event()
        await service.start()
        await service.enqueue("p1", "u1")
        await service.enqueue("p2", "u1")
        await service.enqueue("p3", "u1")
        await asyncio.wait_for(runner.clone_started.wait(), timeout=2)

        shutdown = asyncio.create_task(service.shutdown())
        await asyncio.sleep(0.05)
        assert not shutdown.done()

        runner.clone_gate.set()
        await asyncio.wait_for(shutdown, timeout=2)

        assert observed_statuses(project_store, "p1")[-1] is DeploymentStatus.DEPLOYED
        assert observed_statuses(project_store, "p2") == []
        assert observed_statuses(project_store, "p3") == []
        assert service.pending_jobs == 0
        assert service.is_running is False

    @pytest.mark.asyncio
    async def test_enqueue_after_shutdown(self, service):
        await service.start()
        await service.shutdown()

        with pytest.raises(BuildServiceClosedError):
            await service.enqueue("p1", "u1")

    @pytest.mark.asyncio
    async def test_enqueue_blocked_during_shutdown(
        self, project_store, account_store, runner, tmp_path
    ):
        """Test a call waiting on a full queue is rejected and leaves nothing queued."""
        config = BuildConfig(
            repo_base_path=tmp_path / "repo",
            services_base_path=tmp_path / "services",
            queue_size=1,
        )
        service = BuildService(project_store, account_store, runner=runner, config=config)
        await service.enqueue("p1", "u1")
        blocked = asyncio.create_task(service.enqueue("p2", "u1"))
        await asyncio.sleep(0.05)
        assert not blocked.done()

        await service.shutdown()

        with pytest.raises(BuildServiceClosedError):
            await asyncio.wait_for(blocked, timeout=2)
        assert service.pending_jobs == 0
        assert observed_statuses(project_store, "p2") == []

    @pytest.mark.asyncio
    async def test_start_after_shutdown(self, service):
        await service.shutdown()

        with pytest.raises(BuildServiceClosedError):
            await service.start()

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, service):
        await service.start()
        await service.shutdown()
        await service.shutdown()

        assert service.is_running is False
