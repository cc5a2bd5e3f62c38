"""
Shared Supabase client.
"""

from functools import lru_cache

from supabase import create_client, Client
from alertledger.config import settings


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """
    Process-wide Supabase client, created on first use.

    Uses the service role key so the poller and webhooks can write on behalf
    of any user.

    Raises:
        RuntimeError: SUPABASE_URL or SUPABASE_SERVICE_KEY is not set
    """
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_KEY:
        raise RuntimeError("Supabase is not configured: set SUPABASE_URL and SUPABASE_SERVICE_KEY")
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)
