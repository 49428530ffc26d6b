"""HTTP API for the personal knowledge graph."""
