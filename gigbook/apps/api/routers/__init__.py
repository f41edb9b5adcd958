"""Exports for API routers."""

from . import admin, metrics, system, usage  # noqa: F401

__all__ = ["admin", "metrics", "system", "usage"]
