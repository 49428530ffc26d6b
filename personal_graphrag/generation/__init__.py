"""Prompt construction for graph-grounded generation."""
