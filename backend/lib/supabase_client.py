"""
Supabase client for backend persistence (optional)
"""
import os
import logging
from typing import Optional

from supabase import create_client, Client
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

_supabase_client: Optional[Client] = None


def get_supabase_client() -> Optional[Client]:
    """
    Get or create the Supabase client singleton.

    Returns None when SUPABASE_URL / SUPABASE_SERVICE_KEY are not set; the
    stores then keep everything in memory.
    """
    global _supabase_client

    if _supabase_client is None:
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_SERVICE_KEY")

        if not url or not key:
            logger.warning("⚠️ SUPABASE_URL / SUPABASE_SERVICE_KEY not set, persistence disabled")
            return None

        _supabase_client = create_client(url, key)
        logger.info("✅ Supabase client initialized")

    return _supabase_client
