"""
Typed error kinds produced by the Kova core.

Each error carries an ErrorKind. Transport layers map kinds to their own
status codes in a single table instead of inspecting error messages.
"""

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    EXTERNAL_TOOL = "external_tool"
    BUILDER_UNAVAILABLE = "builder_unavailable"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"


class KovaError(Exception):
    """Base class for all errors raised by the Kova core."""

    kind: ErrorKind = ErrorKind.EXTERNAL_TOOL

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ProjectNotFoundError(KovaError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, project_id: str):
        super().__init__(f"project not found: {project_id}")
        self.project_id = project_id


class AccountNotFoundError(KovaError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, user_id: str, reason: str = "no linked account"):
        super().__init__(f"{reason} for user {user_id}")
        self.user_id = user_id


class InvalidInputError(KovaError):
    kind = ErrorKind.INVALID_INPUT


class StageError(KovaError):
    """
    A pipeline stage failed.

    Args:
        stage: Name of the failing stage ("clone", "build", "compose", "deploy")
        message: Diagnostic detail, usually including tool output
    """

    kind = ErrorKind.EXTERNAL_TOOL

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage} failed: {message}")
        self.stage = stage
        self.detail = message


class CloneError(StageError):
    def __init__(self, message: str):
        super().__init__("clone", message)


class BuildError(StageError):
    def __init__(self, message: str):
        super().__init__("build", message)


class BuilderUnavailableError(BuildError):
    """The image builder backend could not be reached."""

    kind = ErrorKind.BUILDER_UNAVAILABLE


class ComposeError(StageError):
    def __init__(self, message: str):
        super().__init__("compose", message)


class DeployError(StageError):
    def __init__(self, message: str):
        super().__init__("deploy", message)


class NetworkError(DeployError):
    """The shared overlay network could not be brought to the required state."""


class StageTimeoutError(StageError):
    kind = ErrorKind.TIMEOUT

    def __init__(self, stage: str, timeout: float):
        super().__init__(stage, f"timed out after {timeout:g}s")
        self.timeout = timeout


class BuildServiceClosedError(KovaError):
    kind = ErrorKind.UNAVAILABLE

    def __init__(self) -> None:
        super().__init__("build service is shut down and not accepting jobs")
