"""Base connector interface for personal data sources."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class PermissionStatus(str, Enum):
    """Access status of one permission."""

    NOT_DETERMINED = "not_determined"
    DENIED = "denied"
    GRANTED = "granted"
    RESTRICTED = "restricted"


class PermissionType(str, Enum):
    """Kinds of personal data access."""

    CONTACTS = "contacts"
    CALENDAR = "calendar"
    PHOTOS = "photos"
    CALL_LOG = "call_log"
    FILES = "files"


@dataclass
class ConnectorConfig:
    """Connector sync options."""

    incremental_sync: bool = True
    refresh_interval: float | None = None


class DataConnector(ABC):
    """Abstract source of personal records."""

    @property
    @abstractmethod
    def data_type(self) -> str:
        """Unique data type key, e.g. ``"contacts"``."""

    @property
    @abstractmethod
    def required_permissions(self) -> list[PermissionType]:
        ...

    @property
    def config(self) -> ConnectorConfig:
        return ConnectorConfig()

    @abstractmethod
    async def check_permissions(self) -> dict[PermissionType, PermissionStatus]:
        ...

    @abstractmethod
    async def request_permissions(self) -> dict[PermissionType, PermissionStatus]:
        ...

    async def has_required_permissions(self) -> bool:
        """True when every required permission is granted."""
        statuses = await self.check_permissions()
        return all(
            statuses.get(permission) == PermissionStatus.GRANTED
            for permission in self.required_permissions
        )

    @abstractmethod
    async def fetch(self, since: datetime | None = None, limit: int | None = None) -> list[Any]:
        """Fetch records modified after ``since`` (all records when None).

        Args:
            since: Lower bound on modification time, exclusive
            limit: Maximum number of records

        Returns:
            Records as dataclasses with ``to_dict()`` or plain dicts
        """

    @property
    @abstractmethod
    def last_sync_time(self) -> datetime | None:
        ...
