"""Shared utilities: money codec and logging."""
