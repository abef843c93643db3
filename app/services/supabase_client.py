"""Supabase client construction.

One client per process, built from settings on first use. Storage and the
realtime notifier share it.
"""

from __future__ import annotations

import logging
import threading

from supabase import Client, create_client

from app.core.exceptions import ConfigurationError
from app.core.settings import Settings


logger = logging.getLogger(__name__)

_client: Client | None = None
_client_lock = threading.Lock()


def get_supabase(config: Settings) -> Client:
    """Return the shared client, creating it from ``config`` if needed.

    Raises:
        ConfigurationError: If SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY is unset.
    """
    global _client
    with _client_lock:
        if _client is None:
            if not config.supabase_url or not config.supabase_service_role_key:
                raise ConfigurationError(
                    "Missing Supabase credentials. Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY."
                )
            _client = create_client(config.supabase_url, config.supabase_service_role_key)
            logger.info("supabase_client_initialized", extra={"supabase_url": config.supabase_url})
        return _client


def reset_supabase() -> None:
    global _client
    with _client_lock:
        _client = None
