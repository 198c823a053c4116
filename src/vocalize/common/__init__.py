"""Shared infrastructure: configuration, storage, errors and data models."""
