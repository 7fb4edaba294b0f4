"""Kobe workflow engine: graph model, node execution and service integrations."""
