"""
Supabase client for the backend

Used when PERSISTENCE_BACKEND=supabase; the engine stores sessions, plans,
practice questions and the offline queue in one key/value table through it.
"""
import os
from typing import Optional

from supabase import create_client, Client
from dotenv import load_dotenv

# Load environment variables (backend/.env, then the project root .env)
load_dotenv()
load_dotenv(os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))), '.env'))

_supabase_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """Get or create the Supabase client singleton (service role key)."""
    global _supabase_client

    if _supabase_client is None:
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set when PERSISTENCE_BACKEND=supabase")

        _supabase_client = create_client(url, key)

    return _supabase_client


def reset_supabase_client() -> None:
    """Drop the cached client (tests, credential rotation)."""
    global _supabase_client
    _supabase_client = None
