"""Resilient HTTP client with retries, request validation, error classification and health monitoring."""

__version__ = "0.1.0"