"""Connector over an in-memory list of records."""

import logging
from datetime import datetime, timezone
from typing import Any

from .base import ConnectorConfig, DataConnector, PermissionStatus, PermissionType

logger = logging.getLogger(__name__)


class InMemoryConnector(DataConnector):
    """Serves preloaded records; useful for imports, tests and demos.

    Records need a ``last_modified`` attribute (or key) for incremental
    fetches; records without one are always returned.
    """

    def __init__(
        self,
        data_type: str,
        records: list[Any] | None = None,
        permissions: dict[PermissionType, PermissionStatus] | None = None,
        required_permissions: list[PermissionType] | None = None,
        config: ConnectorConfig | None = None,
    ):
        self._data_type = data_type
        self.records = list(records or [])
        self._required = list(required_permissions or [])
        self._permissions = dict(
            permissions
            if permissions is not None
            else {p: PermissionStatus.GRANTED for p in self._required}
        )
        self._config = config or ConnectorConfig()
        self._last_sync_time: datetime | None = None

    @property
    def data_type(self) -> str:
        return self._data_type

    @property
    def required_permissions(self) -> list[PermissionType]:
        return list(self._required)

    @property
    def config(self) -> ConnectorConfig:
        return self._config

    @property
    def last_sync_time(self) -> datetime | None:
        return self._last_sync_time

    def set_permission(self, permission: PermissionType, status: PermissionStatus) -> None:
        self._permissions[permission] = status

    async def check_permissions(self) -> dict[PermissionType, PermissionStatus]:
        return {
            p: self._permissions.get(p, PermissionStatus.NOT_DETERMINED) for p in self._required
        }

    async def request_permissions(self) -> dict[PermissionType, PermissionStatus]:
        # Undetermined permissions are granted on request; explicit denials stick
        for permission in self._required:
            current = self._permissions.get(permission, PermissionStatus.NOT_DETERMINED)
            if current == PermissionStatus.NOT_DETERMINED:
                self._permissions[permission] = PermissionStatus.GRANTED
        return await self.check_permissions()

    @staticmethod
    def _modified_at(record: Any) -> datetime | None:
        if isinstance(record, dict):
            return record.get("last_modified")
        return getattr(record, "last_modified", None)

    async def fetch(self, since: datetime | None = None, limit: int | None = None) -> list[Any]:
        results = []
        for record in self.records:
            modified = self._modified_at(record)
            if since is not None and modified is not None and modified <= since:
                continue
            results.append(record)
            if limit is not None and len(results) >= limit:
                break
        self._last_sync_time = datetime.now(timezone.utc)
        logger.debug(f"Connector '{self._data_type}' fetched {len(results)} records")
        return results
