"""Personal data connectors."""

from .base import (
    ConnectorConfig,
    DataConnector,
    PermissionStatus,
    PermissionType,
)
from .manager import ConnectorManager
from .memory import InMemoryConnector
from .records import CalendarEvent, CallLogEntry, Contact, Document, Photo

__all__ = [
    "ConnectorConfig",
    "DataConnector",
    "PermissionStatus",
    "PermissionType",
    "ConnectorManager",
    "InMemoryConnector",
    "CalendarEvent",
    "CallLogEntry",
    "Contact",
    "Document",
    "Photo",
]
