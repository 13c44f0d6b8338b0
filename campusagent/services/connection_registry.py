from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from .composio_client import AccountNotFoundError

logger = logging.getLogger(__name__)

SERVICES = ("gmail", "googlecalendar", "canvas", "zoom", "googlemeetings")

SERVICE_ALIASES: dict[str, tuple[str, ...]] = {
    "gmail": ("gmail",),
    "googlecalendar": ("googlecalendar", "gcal", "google_calendar"),
    "canvas": ("canvas",),
    "zoom": ("zoom",),
    "googlemeetings": ("googlemeetings", "gmeet", "googlemeet", "google_meet"),
}

SERVICE_LABELS = {
    "gmail": "Gmail",
    "googlecalendar": "Google Calendar",
    "canvas": "Canvas",
    "zoom": "Zoom",
    "googlemeetings": "Google Meetings",
}


class ConnectionLister(Protocol):
    def list_connections(self) -> list[dict[str, Any]]: ...


def canonical_service(slug: str | None) -> str | None:
    normalized = (slug or "").strip().lower()
    if not normalized:
        return None
    for service, aliases in SERVICE_ALIASES.items():
        if normalized in aliases:
            return service
    return None


@dataclass(frozen=True)
class ServiceConnection:
    id: str
    slug: str
    status: str
    user_id: str | None
    service: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status.upper() == "ACTIVE"

    def belongs_to(self, user_id: str) -> bool:
        return bool(self.user_id) and self.user_id == user_id

    def to_summary(self) -> dict[str, object]:
        return {
            "id": self.id,
            "toolkit": self.slug,
            "status": self.status,
            "userId": self.user_id,
        }

    @classmethod
    def from_payload(cls, row: dict[str, Any]) -> "ServiceConnection":
        slug = _read_slug(row)
        return cls(
            id=str(row.get("id") or row.get("nanoid") or row.get("connection_id") or ""),
            slug=slug,
            status=str(row.get("status") or ""),
            user_id=_read_user_id(row),
            service=canonical_service(slug),
        )


@dataclass(frozen=True)
class ConnectionSnapshot:
    user_id: str
    all_connections: list[ServiceConnection]
    connections: list[ServiceConnection]
    matched_exactly: bool
    services: frozenset[str] = field(default_factory=frozenset)

    def is_connected(self, service: str) -> bool:
        canonical = canonical_service(service)
        return canonical is not None and canonical in self.services

    def connection_status(self) -> dict[str, bool]:
        return {service: service in self.services for service in SERVICES}

    def disconnected_services(self) -> list[str]:
        return [service for service in SERVICES if service not in self.services]


class ConnectionRegistry:
    def __init__(self, provider: ConnectionLister, strict_tenancy: bool = False) -> None:
        self.provider = provider
        self.strict_tenancy = strict_tenancy

    def list_connections(self) -> list[ServiceConnection]:
        try:
            rows = self.provider.list_connections()
        except AccountNotFoundError:
            logger.warning("No connected accounts found; proceeding without tools.")
            return []
        return [ServiceConnection.from_payload(row) for row in rows if isinstance(row, dict)]

    def snapshot(self, user_id: str) -> ConnectionSnapshot:
        all_connections = self.list_connections()
        owned = [
            conn for conn in all_connections if conn.belongs_to(user_id) and conn.is_active
        ]
        matched_exactly = bool(owned)
        usable = owned
        if not owned and not self.strict_tenancy:
            # Connections made without a user tag still count for whoever asks.
            usable = [conn for conn in all_connections if conn.is_active]
            if usable:
                logger.info(
                    "No connections tagged for user %s; falling back to %d ACTIVE connection(s).",
                    user_id,
                    len(usable),
                )
        services = frozenset(conn.service for conn in usable if conn.service)
        logger.info(
            "Connection status for %s: %s (total listed %d, exact=%s)",
            user_id,
            sorted(services),
            len(all_connections),
            matched_exactly,
        )
        return ConnectionSnapshot(
            user_id=user_id,
            all_connections=all_connections,
            connections=usable,
            matched_exactly=matched_exactly,
            services=services,
        )

    def is_connected(self, service: str, user_id: str) -> bool:
        return self.snapshot(user_id).is_connected(service)

    def owned_connections(self, user_id: str, service: str) -> list[ServiceConnection]:
        """Connections of a service tagged with this user; never the soft-tenancy fallback."""
        canonical = canonical_service(service)
        if canonical is None:
            raise ValueError(f"Unknown service '{service}'.")
        return [
            conn
            for conn in self.list_connections()
            if conn.service == canonical and conn.belongs_to(user_id)
        ]

    def status_report(self) -> dict[str, object]:
        all_connections = self.list_connections()
        report: dict[str, object] = {}
        for service in SERVICES:
            active = [
                conn for conn in all_connections if conn.service == service and conn.is_active
            ]
            report[service] = bool(active)
            report[f"{service}Connections"] = [conn.to_summary() for conn in active]
        report["totalConnections"] = len(all_connections)
        return report


def _read_slug(row: dict[str, Any]) -> str:
    toolkit = row.get("toolkit")
    if isinstance(toolkit, dict):
        value = toolkit.get("slug")
    else:
        value = row.get("toolkit_slug") or toolkit
    return str(value or "").strip().lower()


def _read_user_id(row: dict[str, Any]) -> str | None:
    for key in ("user_id", "external_user_id", "externalUserId", "externalUserID"):
        value = row.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
