"""
Engine Settings

All knobs come from environment variables (a .env file is loaded first).
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _get_choice(name: str, default: str, choices) -> str:
    value = os.getenv(name, default).strip().lower()
    if value not in choices:
        raise ValueError(f"{name} must be one of {', '.join(choices)}, got {value!r}")
    return value


@dataclass
class EngineSettings:
    """Runtime configuration for the tutoring engine."""
    generation_backend: str = "template"
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    generation_timeout_seconds: float = 30.0

    persistence_backend: str = "memory"
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    supabase_kv_table: str = "kv_store"

    connectivity_mode: str = "manual"
    connectivity_probe_host: str = "api.openai.com"
    connectivity_probe_port: int = 443
    connectivity_poll_seconds: float = 15.0

    offline_queue_max_size: int = 500
    offline_queue_overflow: str = "reject"
    practice_cache_max_per_subject: int = 500

    default_grade_level: str = "primary_4_7"
    random_seed: Optional[int] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "EngineSettings":
        """
        Build settings from the environment.

        Raises:
            ValueError: a variable has an invalid value, or a chosen backend is
                missing its credentials
        """
        load_dotenv(dotenv_path)

        seed = os.getenv("RANDOM_SEED")
        settings = cls(
            generation_backend=_get_choice("GENERATION_BACKEND", "template", ("template", "openai")),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            generation_timeout_seconds=_get_float("GENERATION_TIMEOUT_SECONDS", 30.0),
            persistence_backend=_get_choice("PERSISTENCE_BACKEND", "memory", ("memory", "supabase")),
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY"),
            supabase_kv_table=os.getenv("SUPABASE_KV_TABLE", "kv_store"),
            connectivity_mode=_get_choice("CONNECTIVITY_MODE", "manual", ("manual", "probe")),
            connectivity_probe_host=os.getenv("CONNECTIVITY_PROBE_HOST", "api.openai.com"),
            connectivity_probe_port=_get_int("CONNECTIVITY_PROBE_PORT", 443),
            connectivity_poll_seconds=_get_float("CONNECTIVITY_POLL_SECONDS", 15.0),
            offline_queue_max_size=_get_int("OFFLINE_QUEUE_MAX_SIZE", 500),
            offline_queue_overflow=_get_choice("OFFLINE_QUEUE_OVERFLOW", "reject", ("reject", "drop_oldest")),
            practice_cache_max_per_subject=_get_int("PRACTICE_CACHE_MAX_PER_SUBJECT", 500),
            default_grade_level=os.getenv("DEFAULT_GRADE_LEVEL", "primary_4_7"),
            random_seed=int(seed) if seed not in (None, "") else None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.generation_backend == "openai" and not self.openai_api_key:
            raise ValueError("OPENAI_API_KEY must be set when GENERATION_BACKEND=openai")
        if self.persistence_backend == "supabase" and not (self.supabase_url and self.supabase_service_key):
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set when PERSISTENCE_BACKEND=supabase")
        if self.offline_queue_max_size < 1:
            raise ValueError("OFFLINE_QUEUE_MAX_SIZE must be at least 1")
        if self.practice_cache_max_per_subject < 1:
            raise ValueError("PRACTICE_CACHE_MAX_PER_SUBJECT must be at least 1")
        if self.generation_timeout_seconds < 0:
            raise ValueError("GENERATION_TIMEOUT_SECONDS cannot be negative")
