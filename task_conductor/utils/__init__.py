"""Shared utilities: logging setup, subprocess execution and sanitization."""
