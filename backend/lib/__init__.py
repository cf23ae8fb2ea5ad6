"""Backend utilities"""
from .supabase_client import get_supabase_client
from .logger import get_logger, setup_logging

__all__ = ["get_supabase_client", "get_logger", "setup_logging"]
