"""Supabase client construction for the portal.

Every browser session gets its own async client so the provider's in-memory
session storage holds exactly one signed-in identity. Clients are created
with the publishable (anon) key, so every table read and insert is subject to
the project's row level security policies.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from supabase import AsyncClient, acreate_client
from supabase.lib.client_options import AsyncClientOptions

from .config import PortalSettings

logger = logging.getLogger("portal.supabase")

ClientFactory = Callable[[], Awaitable[AsyncClient]]


async def create_provider_client(settings: PortalSettings) -> AsyncClient:
    """Create a Supabase client bound to one browser session.

    Token refresh happens lazily inside ``get_session``; the background
    refresh timer is disabled because the client outlives no request loop.
    """
    logger.info(
        "Initializing Supabase client",
        extra={
            "supabase_url": settings.supabase_url,
            "key_type": "publishable",
        },
    )
    options = AsyncClientOptions(auto_refresh_token=False)
    return await acreate_client(settings.supabase_url, settings.supabase_key, options=options)


def client_factory_for(settings: PortalSettings) -> ClientFactory:
    async def _factory() -> AsyncClient:
        return await create_provider_client(settings)

    return _factory


__all__ = ["ClientFactory", "client_factory_for", "create_provider_client"]
