"""Configuration management for the customer portal."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

logger = logging.getLogger("portal.config")

DEFAULT_SITE_URL = "http://localhost:8000"
DEFAULT_BRAND_NAME = "Hemglass Kundportal"


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _first_set(environ: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = environ.get(name)
        if value and value.strip():
            return value.strip()
    return None


@dataclass(frozen=True)
class PortalSettings:
    """Resolved settings for the portal web application."""

    supabase_url: str
    supabase_key: str
    session_secret: str
    site_url: str = DEFAULT_SITE_URL
    secure_cookies: bool = False
    session_ttl: timedelta = timedelta(hours=8)
    refresh_timeout: float = 5.0
    trusted_proxies: tuple[str, ...] = ()
    brand_name: str = DEFAULT_BRAND_NAME

    @property
    def redirect_url(self) -> str:
        """Landing URL used in sign-up confirmation emails."""
        return self.site_url.rstrip("/") + "/"

    def redacted(self) -> Dict[str, object]:
        return {
            "supabase_url": self.supabase_url,
            "supabase_key": _redact(self.supabase_key),
            "session_secret": _redact(self.session_secret),
            "site_url": self.site_url,
            "secure_cookies": self.secure_cookies,
            "session_ttl_hours": self.session_ttl.total_seconds() / 3600,
            "refresh_timeout": self.refresh_timeout,
            "trusted_proxies": list(self.trusted_proxies) or "*",
            "brand_name": self.brand_name,
        }

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "PortalSettings":
        """Create :class:`PortalSettings` from raw mapping data."""
        required_fields = {"supabase_url", "supabase_key", "session_secret"}
        missing = sorted(name for name in required_fields if not data.get(name))
        if missing:
            raise RuntimeError(
                f"Missing required portal configuration values: {', '.join(missing)}"
            )

        raw_proxies = data.get("trusted_proxies") or ()
        if isinstance(raw_proxies, str):
            raw_proxies = raw_proxies.split(",")
        proxies = tuple(str(item).strip() for item in raw_proxies if str(item).strip())

        secure = data.get("secure_cookies", False)
        if isinstance(secure, str):
            secure = _env_flag(secure)

        try:
            ttl_hours = float(data.get("session_ttl_hours", 8))
            refresh_timeout = float(data.get("refresh_timeout", 5.0))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid numeric portal setting: {exc}") from exc
        if ttl_hours <= 0:
            raise ValueError("session_ttl_hours must be positive")

        return PortalSettings(
            supabase_url=str(data["supabase_url"]).rstrip("/"),
            supabase_key=str(data["supabase_key"]),
            session_secret=str(data["session_secret"]),
            site_url=str(data.get("site_url") or DEFAULT_SITE_URL),
            secure_cookies=bool(secure),
            session_ttl=timedelta(hours=ttl_hours),
            refresh_timeout=refresh_timeout,
            trusted_proxies=proxies,
            brand_name=str(data.get("brand_name") or DEFAULT_BRAND_NAME),
        )


def _redact(secret: str) -> str:
    if len(secret) <= 8:
        return "***"
    return f"{secret[:4]}…{secret[-2:]}"


def _load_yaml(config_path: Path) -> Dict[str, object]:
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError("Portal configuration file must contain a mapping")
    section = raw.get("portal", raw)
    if not isinstance(section, dict):
        raise ValueError("The 'portal' section of the configuration file must be a mapping")
    return dict(section)


def _from_environment(environ: Mapping[str, str]) -> Dict[str, object]:
    values: Dict[str, object] = {}

    url = _first_set(environ, "SUPABASE_URL")
    if url:
        values["supabase_url"] = url

    key = _first_set(environ, "SB_PUBLISHABLE_KEY")
    if key is None:
        key = _first_set(environ, "SUPABASE_ANON_KEY")
        if key:
            logger.info(
                "Using legacy SUPABASE_ANON_KEY (consider migrating to SB_PUBLISHABLE_KEY)"
            )
    if key:
        values["supabase_key"] = key

    simple = {
        "PORTAL_SESSION_SECRET": "session_secret",
        "PORTAL_SITE_URL": "site_url",
        "PORTAL_SESSION_SECURE": "secure_cookies",
        "PORTAL_SESSION_TTL_HOURS": "session_ttl_hours",
        "PORTAL_REFRESH_TIMEOUT": "refresh_timeout",
        "PORTAL_TRUSTED_PROXIES": "trusted_proxies",
        "PORTAL_BRAND_NAME": "brand_name",
    }
    for env_name, setting in simple.items():
        value = _first_set(environ, env_name)
        if value is not None:
            values[setting] = value
    return values


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> PortalSettings:
    """Load settings from an optional YAML file, overridden by the environment."""
    if environ is None:
        environ = os.environ

    data: Dict[str, object] = {}
    if config_path is not None and config_path.exists():
        data.update(_load_yaml(config_path))
    elif config_path is not None:
        logger.warning("Portal configuration file %s not found; using environment only", config_path)

    data.update(_from_environment(environ))
    return PortalSettings.from_dict(data)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the optional YAML configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "portal.yaml").resolve(strict=False)
    return candidate


__all__ = ["PortalSettings", "load_settings", "resolve_config_path"]
