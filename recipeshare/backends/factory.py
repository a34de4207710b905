"""
Backend selection.

When Supabase credentials are available the application talks to the hosted
project; otherwise it falls back to the in-memory backend (local development
and tests). Data in the in-memory backend is lost on restart.
"""

import logging
from typing import Optional

from .base import Backend
from .memory import InMemoryGateway, InMemorySessionProvider, InMemoryStorage

logger = logging.getLogger(__name__)


def create_memory_backend() -> Backend:
    return Backend(
        gateway=InMemoryGateway(),
        sessions=InMemorySessionProvider(),
        storage=InMemoryStorage(),
        mode="memory",
    )


def create_backend(
    supabase_url: Optional[str] = None,
    supabase_key: Optional[str] = None,
    timeout: float = 15.0,
) -> Backend:
    """
    Build the backend for the given credentials.

    Args:
        supabase_url: Supabase project URL; None selects the in-memory backend
        supabase_key: Supabase anon key; None selects the in-memory backend
        timeout: Request timeout in seconds for Supabase calls
    """
    if not supabase_url or not supabase_key:
        logger.warning("Supabase not configured (SUPABASE_URL/SUPABASE_ANON_KEY); using in-memory backend")
        return create_memory_backend()

    from .supabase_backend import SupabaseGateway, SupabaseSessionProvider, SupabaseStorage

    logger.info("Using Supabase backend at %s", supabase_url)
    return Backend(
        gateway=SupabaseGateway(supabase_url, supabase_key, timeout=timeout),
        sessions=SupabaseSessionProvider(supabase_url, supabase_key),
        storage=SupabaseStorage(supabase_url, supabase_key, timeout=timeout),
        mode="supabase",
    )
