"""Customer portal web front-end backed by a hosted Supabase project."""

from __future__ import annotations

from typing import Any

from .config import PortalSettings, load_settings, resolve_config_path


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the portal web application."""

    from .web import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "PortalSettings",
    "create_app",
    "load_settings",
    "resolve_config_path",
]
