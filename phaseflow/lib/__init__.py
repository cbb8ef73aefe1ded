"""Shared types, configuration, validation and locking."""
