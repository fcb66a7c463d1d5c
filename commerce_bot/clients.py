"""Shared Supabase and HTTP clients (lazily created, reused across requests)."""

import logging
from typing import Optional

import httpx
from supabase import Client, create_client

from commerce_bot.config import config

logger = logging.getLogger(__name__)

# ============================================================
# SUPABASE CLIENT
# ============================================================
supabase: Optional[Client] = None
_http_client: Optional[httpx.AsyncClient] = None


def get_supabase() -> Client:
    global supabase
    if supabase is None:
        if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_KEY:
            logger.error("Supabase credentials not configured")
            raise RuntimeError("Supabase credentials not configured")
        try:
            supabase = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_KEY)
            logger.info("Supabase client initialized")
        except Exception as e:
            logger.error(f"Failed to create Supabase client: {type(e).__name__}")
            raise RuntimeError("Database connection failed") from e
    return supabase


def is_supabase_configured() -> bool:
    """Check if Supabase is properly configured."""
    return bool(config.SUPABASE_URL and config.SUPABASE_SERVICE_KEY)


# ============================================================
# HTTP CLIENT
# ============================================================
def get_http_client() -> httpx.AsyncClient:
    """Get reusable HTTP client for better connection pooling."""
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(
            timeout=config.HTTP_TIMEOUT_SECONDS,
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None
