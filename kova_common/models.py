"""
Data models for Kova deployments.

These models represent the domain objects used throughout the application,
independent of the underlying storage mechanism.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class DeploymentStatus(str, Enum):
    """
    Deployment status of a project.

    Within one job's run the status only moves forward:
    pending -> building -> deploying -> deployed, or to failed from any
    non-terminal state.
    """

    PENDING = "pending"
    BUILDING = "building"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DeploymentStatus.DEPLOYED, DeploymentStatus.FAILED)

    def can_transition_to(self, new_status: "DeploymentStatus") -> bool:
        """Check whether moving from this status to new_status is allowed."""
        if self.is_terminal:
            return False
        if new_status is DeploymentStatus.FAILED:
            return True
        return new_status in _NEXT_STATUS.get(self, ())


_NEXT_STATUS: dict[DeploymentStatus, tuple[DeploymentStatus, ...]] = {
    DeploymentStatus.PENDING: (DeploymentStatus.BUILDING,),
    DeploymentStatus.BUILDING: (DeploymentStatus.DEPLOYING,),
    DeploymentStatus.DEPLOYING: (DeploymentStatus.DEPLOYED,),
}


@dataclass
class EnvironmentVariable:
    """A single key/value pair passed to the build of a project."""

    key: str
    value: str

    def to_dict(self, mask: bool = True) -> dict[str, str]:
        """Convert to dictionary format, masking the value by default."""
        value = "*" * min(len(self.value), 8) if mask else self.value
        return {"key": self.key, "value": value}


@dataclass
class Project:
    """
    Represents a deployable project.

    The authoritative copy lives in the store; the build worker only holds
    a read snapshot for the duration of one job.
    """

    id: str
    name: str
    user_id: str
    repository_url: str
    domain: str
    branch: str = "main"
    env_variables: list[EnvironmentVariable] = field(default_factory=list)
    port: int | None = None
    deployment_status: DeploymentStatus = DeploymentStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def is_owned_by(self, user_id: str) -> bool:
        return self.user_id == user_id

    def to_dict(self) -> dict[str, Any]:
        """Convert project to dictionary format (for API responses)."""
        return {
            "id": self.id,
            "name": self.name,
            "user_id": self.user_id,
            "repository_url": self.repository_url,
            "branch": self.branch,
            "domain": self.domain,
            "port": self.port,
            "env_variables": [env.to_dict() for env in self.env_variables],
            "deployment_status": self.deployment_status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class Account:
    """
    Represents a linked source-control account of a user.

    The access token is used to clone private repositories. It is never
    included in serialized output.
    """

    id: str
    user_id: str
    github_username: str
    access_token: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def has_token(self) -> bool:
        return bool(self.access_token)

    def to_dict(self) -> dict[str, Any]:
        """Convert account to dictionary format (token omitted)."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "github_username": self.github_username,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class BuildJob:
    """A request to run the deployment pipeline for one project."""

    project_id: str
    user_id: str


@dataclass(frozen=True)
class StatusEvent:
    """Ephemeral deployment status event pushed to live subscribers."""

    project_id: str
    status: DeploymentStatus

    def to_message(self) -> dict[str, str]:
        """Wire format delivered over the live connection."""
        return {"type": "deployment_status", "status": self.status.value}
