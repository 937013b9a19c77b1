"""Backend utilities"""
from .supabase_client import get_supabase_client, reset_supabase_client
from .logger import setup_logging, get_logger

__all__ = ["get_supabase_client", "reset_supabase_client", "setup_logging", "get_logger"]
