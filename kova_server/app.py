import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    Request,
    WebSocket,
    status,
)
from fastapi.requests import HTTPConnection
from fastapi.responses import JSONResponse

from kova_builder.service import BuildService
from kova_common.errors import ErrorKind, KovaError, ProjectNotFoundError
from kova_common.models import StatusEvent
from kova_persistence.sqlite_repository import SQLiteStore

from .config import ServerConfig
from .hub import StatusHub, Subscriber

logger = logging.getLogger(__name__)

# Error kind -> HTTP status, the only place transport codes are chosen
ERROR_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.EXTERNAL_TOOL: 502,
    ErrorKind.BUILDER_UNAVAILABLE: 503,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.UNAVAILABLE: 503,
}

router = APIRouter()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI app.

    Handles startup and shutdown events:
    - Startup: Open the store, start the status hub and the build worker
    - Shutdown: Let the in-flight build finish, stop the hub, close the store
    """
    config: ServerConfig = app.state.config

    store = SQLiteStore(config.db_path)
    await store.initialize()

    hub = StatusHub(send_timeout=config.hub_send_timeout)
    await hub.start()

    build_service = BuildService(
        project_store=store,
        account_store=store,
        hub=hub,
        config=config.build,
    )
    await build_service.start()

    app.state.store = store
    app.state.hub = hub
    app.state.build_service = build_service

    yield

    await build_service.shutdown()
    await hub.stop()
    await store.close()


def get_store(conn: HTTPConnection) -> SQLiteStore:
    """
    Get the store of the running app.

    Raises:
        RuntimeError: If store is not initialized
    """
    store = getattr(conn.app.state, "store", None)
    if store is None:
        raise RuntimeError("Store not initialized")
    return store


def get_hub(conn: HTTPConnection) -> StatusHub:
    """
    Get the status hub of the running app.

    Raises:
        RuntimeError: If the hub is not initialized
    """
    hub = getattr(conn.app.state, "hub", None)
    if hub is None:
        raise RuntimeError("Status hub not initialized")
    return hub


def get_build_service(conn: HTTPConnection) -> BuildService:
    """
    Get the build service of the running app.

    Raises:
        RuntimeError: If the build service is not initialized
    """
    build_service = getattr(conn.app.state, "build_service", None)
    if build_service is None:
        raise RuntimeError("Build service not initialized")
    return build_service


async def kova_error_handler(request: Request, exc: KovaError) -> JSONResponse:
    """Translate a core error into its HTTP status via ERROR_STATUS_CODES."""
    return JSONResponse(
        status_code=ERROR_STATUS_CODES.get(exc.kind, 500),
        content={"error": exc.message, "kind": exc.kind.value},
    )


@router.get("/health")
async def health_check() -> dict[str, str]:
    """
    Health check endpoint.

    Returns:
        Dictionary with status="ok" if server is running
    """
    return {"status": "ok"}


@router.get("/projects/{project_id}")
async def get_project(
    project_id: str, store: SQLiteStore = Depends(get_store)
) -> dict[str, Any]:
    """
    Get a project with its current deployment status.

    Raises:
        ProjectNotFoundError: 404 if project_id not found
    """
    project = await store.get_project_by_id(project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)
    return project.to_dict()


@router.post("/projects/{project_id}/deploy", status_code=202)
async def deploy_project(
    project_id: str,
    store: SQLiteStore = Depends(get_store),
    build_service: BuildService = Depends(get_build_service),
) -> dict[str, str]:
    """
    Queue a (re)deployment of a project.

    Waits while the build queue is full. Progress is pushed to WebSocket
    subscribers of /ws/projects/{project_id}.

    Raises:
        ProjectNotFoundError: 404 if project_id not found
        BuildServiceClosedError: 503 if the server is shutting down
    """
    project = await store.get_project_by_id(project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)

    await build_service.enqueue(project.id, project.user_id)
    return {"project_id": project.id, "status": "queued"}


@router.get("/ws/projects/{project_id}")
async def project_status_upgrade_required(project_id: str) -> JSONResponse:
    """Plain HTTP request on the status socket path."""
    return JSONResponse(
        status_code=status.HTTP_426_UPGRADE_REQUIRED,
        content={"error": "WebSocket upgrade required"},
    )


@router.websocket("/ws/projects/{project_id}")
async def project_status_socket(
    websocket: WebSocket,
    project_id: str,
    store: SQLiteStore = Depends(get_store),
    hub: StatusHub = Depends(get_hub),
) -> None:
    """
    Stream deployment status events of one project.

    The current status is sent first, then one message per transition:
    {"type": "deployment_status", "status": "<status>"}.
    """
    project = await store.get_project_by_id(project_id)
    if project is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    subscriber = Subscriber(connection=websocket, project_id=project_id)
    snapshot = StatusEvent(project_id, project.deployment_status).to_message()
    await hub.register(subscriber, initial=snapshot)

    try:
        # Reads only detect the disconnect; clients have nothing to say
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        logger.info(f"WebSocket client disconnecting from project: {project_id}")
        await hub.unregister(subscriber)


def create_app(config: ServerConfig | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Server configuration (read from environment if omitted)
    """
    app = FastAPI(title="Kova", lifespan=lifespan)
    app.state.config = config or ServerConfig.from_env()
    app.add_exception_handler(KovaError, kova_error_handler)
    app.include_router(router)
    return app


app = create_app()
