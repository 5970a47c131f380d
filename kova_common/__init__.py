"""
Kova Common module.

This module contains shared domain models, store interfaces and error
kinds used across the Kova components (builder, server, persistence).

The common module has no dependencies on other kova_* modules, making it
a pure domain layer that can be imported by any component.
"""

from .errors import ErrorKind, KovaError
from .models import (
    Account,
    BuildJob,
    DeploymentStatus,
    EnvironmentVariable,
    Project,
    StatusEvent,
)
from .repository import AccountStore, ProjectStore

__all__ = [
    "Account",
    "AccountStore",
    "BuildJob",
    "DeploymentStatus",
    "EnvironmentVariable",
    "ErrorKind",
    "KovaError",
    "Project",
    "ProjectStore",
    "StatusEvent",
]
