"""
Kova Builder module.

This module contains the deployment pipeline: the process runner boundary
for external tools, the four pipeline stages, the overlay network ensurer
and the single-worker build service that drives them.

The builder runs inside the server process so that every status
transition can be pushed to the status hub.
"""

from .config import BuildConfig
from .network import NetworkEnsurer
from .pipeline import DeploymentPipeline
from .runner import AsyncioProcessRunner, ProcessResult, ProcessRunner, RunningProcess
from .service import BuildService

__all__ = [
    "AsyncioProcessRunner",
    "BuildConfig",
    "BuildService",
    "DeploymentPipeline",
    "NetworkEnsurer",
    "ProcessResult",
    "ProcessRunner",
    "RunningProcess",
]
