"""Core path model, error taxonomy, storage layer and utilities."""
