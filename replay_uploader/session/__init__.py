"""Readiness-gated task queue and collaborator contracts."""

from replay_uploader.session.authenticated_task_queue import (
    AuthenticatedTaskQueue,
    TaskStatus,
)
from replay_uploader.session.collaborators import (
    AuthInfo,
    FeatureFlagService,
    IdentityService,
    PackageInfo,
    TelemetrySink,
)

__all__ = [
    "AuthInfo",
    "AuthenticatedTaskQueue",
    "FeatureFlagService",
    "IdentityService",
    "PackageInfo",
    "TaskStatus",
    "TelemetrySink",
]
