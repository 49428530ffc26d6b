"""Registry of data connectors with permission checks and sync state."""

import logging
from datetime import datetime, timezone
from typing import Any

from personal_graphrag.exceptions import PermissionDeniedError

from .base import DataConnector, PermissionStatus, PermissionType

logger = logging.getLogger(__name__)


class ConnectorManager:
    """Owns registered connectors and their last-sync timestamps."""

    def __init__(self):
        self._connectors: dict[str, DataConnector] = {}
        self._last_sync_times: dict[str, datetime] = {}
        self._pending_sync_times: dict[str, datetime] = {}

    def register_connector(self, connector: DataConnector) -> None:
        """Register a connector, replacing any with the same data type."""
        self._connectors[connector.data_type] = connector
        logger.info(f"Registered connector: {connector.data_type}")

    def get_connector(self, data_type: str) -> DataConnector | None:
        return self._connectors.get(data_type)

    @property
    def connectors(self) -> list[DataConnector]:
        return list(self._connectors.values())

    def _require(self, data_type: str) -> DataConnector:
        connector = self._connectors.get(data_type)
        if connector is None:
            raise ValueError(f"Unknown connector type: {data_type}")
        return connector

    async def check_all_permissions(
        self,
    ) -> dict[str, dict[PermissionType, PermissionStatus]]:
        return {
            data_type: await connector.check_permissions()
            for data_type, connector in self._connectors.items()
        }

    async def request_permissions(self, data_type: str) -> dict[PermissionType, PermissionStatus]:
        return await self._require(data_type).request_permissions()

    async def fetch_data(
        self,
        data_type: str,
        incremental_sync: bool = True,
        limit: int | None = None,
        defer_sync: bool = False,
    ) -> list[Any]:
        """Fetch records from one connector.

        The sync time recorded is the moment the fetch started, so records
        modified while it runs are picked up by the next incremental fetch.

        Args:
            data_type: Registered connector key
            incremental_sync: Only fetch records newer than the last sync
            limit: Maximum records; None fetches every changed record
            defer_sync: Stage the sync time until ``commit_sync()`` instead
                of recording it now

        Raises:
            ValueError: Unknown data type
            PermissionDeniedError: Required permissions are not granted
        """
        connector = self._require(data_type)

        if not await connector.has_required_permissions():
            raise PermissionDeniedError(
                f"Missing required permissions for {data_type} connector",
                [p.value for p in connector.required_permissions],
            )

        since = self._last_sync_times.get(data_type) if incremental_sync else None
        started = datetime.now(timezone.utc)
        data = await connector.fetch(since=since, limit=limit)
        if defer_sync:
            self._pending_sync_times[data_type] = started
        else:
            self._last_sync_times[data_type] = started
        return data

    async def fetch_all_available(
        self, incremental_sync: bool = True, defer_sync: bool = False
    ) -> dict[str, list[Any]]:
        """Fetch from every connector, skipping those that are denied or fail."""
        results: dict[str, list[Any]] = {}
        for data_type in list(self._connectors):
            try:
                results[data_type] = await self.fetch_data(
                    data_type, incremental_sync=incremental_sync, defer_sync=defer_sync
                )
            except PermissionDeniedError as e:
                logger.warning(f"Skipping connector '{data_type}': {e}")
                results[data_type] = []
            except Exception as e:
                logger.warning(f"Connector '{data_type}' fetch failed, skipping: {e}")
                results[data_type] = []
        return results

    def commit_sync(self) -> None:
        """Record the sync times staged by deferred fetches."""
        self._last_sync_times.update(self._pending_sync_times)
        self._pending_sync_times.clear()

    def discard_pending_sync(self) -> None:
        """Drop staged sync times so their records are fetched again."""
        self._pending_sync_times.clear()

    def get_last_sync_time(self, data_type: str) -> datetime | None:
        return self._last_sync_times.get(data_type)

    def reset_sync_state(self, data_type: str | None = None) -> None:
        """Forget last-sync times so the next fetch is a full one."""
        if data_type is not None:
            self._last_sync_times.pop(data_type, None)
            self._pending_sync_times.pop(data_type, None)
        else:
            self._last_sync_times.clear()
            self._pending_sync_times.clear()
        logger.info(f"Sync state reset for {data_type or 'all connectors'}")
