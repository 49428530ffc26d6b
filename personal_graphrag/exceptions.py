"""Error taxonomy for the knowledge-graph engine."""


class GraphRAGError(Exception):
    """Base class for all engine errors."""


class NotInitializedError(GraphRAGError):
    """A component was used before ``initialize()`` completed."""


class DimensionMismatchError(GraphRAGError):
    """An embedding does not match the store's established dimension."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )


class PermissionDeniedError(GraphRAGError):
    """A connector lacks the permissions required to read its data."""

    def __init__(self, message: str, missing_permissions: list[str] | None = None):
        self.missing_permissions = missing_permissions or []
        super().__init__(message)


class CypherParseError(GraphRAGError):
    """Malformed Cypher text."""

    def __init__(self, message: str, position: int | None = None):
        self.message = message
        self.position = position
        if position is not None:
            message = f"{message} (at position {position})"
        super().__init__(message)


class IndexingStateError(GraphRAGError):
    """Invalid background indexing transition."""
