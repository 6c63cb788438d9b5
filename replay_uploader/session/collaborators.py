"""Contracts for the services the uploader talks to but does not implement."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class AuthInfo:
    """Identity behind an access token."""

    id: str
    type: str


@dataclass(frozen=True)
class PackageInfo:
    """Name and version of the package embedding the uploader."""

    name: str
    version: str


class IdentityService(Protocol):
    """Resolves an access token to the identity it belongs to."""

    async def fetch_auth_info(self, access_token: str) -> AuthInfo: ...


class FeatureFlagService(Protocol):
    """Reads boolean feature flags."""

    async def get_feature_flag_value(self, name: str, default: bool) -> bool: ...


class TelemetrySink(Protocol):
    """Receives analytics events; results are never inspected."""

    def track_event(self, name: str, properties: dict[str, Any]) -> None: ...
