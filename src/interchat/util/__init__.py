"""Shared helpers: logging setup and small formatting utilities."""
