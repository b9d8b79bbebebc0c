"""
Supabase Client Management
==========================

SECURITY PRINCIPLE (Least Privilege):
- The indexer is the only writer and uses the SERVICE_ROLE key
- Downstream readers use the ANON key (respects RLS) and never go through
  this process
"""

import logging
from typing import Optional

from supabase import create_client, Client

from pob_indexer.config import SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY

logger = logging.getLogger(__name__)

# Singleton client (lazily initialized)
_write_client: Optional[Client] = None


def get_write_client() -> Client:
    """
    Get Supabase client for WRITE operations (uses SERVICE_ROLE key).

    Raises:
        RuntimeError: If Supabase is not configured
    """
    global _write_client

    if _write_client is not None:
        return _write_client

    if not SUPABASE_URL:
        raise RuntimeError("SUPABASE_URL not configured")

    if not SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY not configured")

    _write_client = create_client(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)
    logger.info("✅ Supabase WRITE client initialized (SERVICE_ROLE_KEY)")

    return _write_client
