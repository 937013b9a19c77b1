"""
Unit Tests for EngineSettings and build_engine
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "tutoring_sync_engine", "src"))

from tutoring_sync_engine.config import EngineSettings
from tutoring_sync_engine.connectivity import ManualConnectivity, SocketConnectivityMonitor
from tutoring_sync_engine.engine import build_engine
from tutoring_sync_engine.offline_queue import OverflowPolicy
from tutoring_sync_engine.persistence import InMemoryPersistence, SupabasePersistence
from tutoring_sync_engine.response_generation import OpenAIResponseGenerator, TemplateResponseGenerator

ENV_VARS = [
    "GENERATION_BACKEND", "OPENAI_API_KEY", "OPENAI_MODEL", "GENERATION_TIMEOUT_SECONDS",
    "PERSISTENCE_BACKEND", "SUPABASE_URL", "SUPABASE_SERVICE_KEY", "SUPABASE_KV_TABLE",
    "CONNECTIVITY_MODE", "CONNECTIVITY_PROBE_HOST", "CONNECTIVITY_PROBE_PORT",
    "CONNECTIVITY_POLL_SECONDS", "OFFLINE_QUEUE_MAX_SIZE", "OFFLINE_QUEUE_OVERFLOW",
    "PRACTICE_CACHE_MAX_PER_SUBJECT", "DEFAULT_GRADE_LEVEL", "RANDOM_SEED", "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Clear engine variables and point dotenv at an empty file."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    dotenv_file = tmp_path / ".env"
    dotenv_file.write_text("")
    return str(dotenv_file)


class TestEngineSettings:
    """Test suite for EngineSettings.from_env()."""

    def test_defaults(self, clean_env):
        settings = EngineSettings.from_env(clean_env)
        assert settings.generation_backend == "template"
        assert settings.persistence_backend == "memory"
        assert settings.connectivity_mode == "manual"
        assert settings.offline_queue_max_size == 500
        assert settings.offline_queue_overflow == "reject"
        assert settings.random_seed is None

    def test_reads_environment(self, clean_env, monkeypatch):
        monkeypatch.setenv("OFFLINE_QUEUE_MAX_SIZE", "25")
        monkeypatch.setenv("OFFLINE_QUEUE_OVERFLOW", "DROP_OLDEST")
        monkeypatch.setenv("RANDOM_SEED", "7")
        monkeypatch.setenv("GENERATION_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = EngineSettings.from_env(clean_env)

        assert settings.offline_queue_max_size == 25
        assert settings.offline_queue_overflow == "drop_oldest"
        assert settings.random_seed == 7
        assert settings.generation_timeout_seconds == 2.5
        assert settings.log_level == "DEBUG"

    def test_reads_dotenv_file(self, clean_env, monkeypatch):
        with open(clean_env, "w") as f:
            f.write("DEFAULT_GRADE_LEVEL=form_2\n")
        # load_dotenv writes into os.environ; let monkeypatch undo it
        monkeypatch.setenv("DEFAULT_GRADE_LEVEL", "")
        monkeypatch.delenv("DEFAULT_GRADE_LEVEL")
        assert EngineSettings.from_env(clean_env).default_grade_level == "form_2"

    @pytest.mark.parametrize("name,value", [
        ("OFFLINE_QUEUE_MAX_SIZE", "lots"),
        ("OFFLINE_QUEUE_MAX_SIZE", "0"),
        ("OFFLINE_QUEUE_OVERFLOW", "block"),
        ("GENERATION_BACKEND", "magic"),
        ("GENERATION_TIMEOUT_SECONDS", "-1"),
    ])
    def test_invalid_values(self, clean_env, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ValueError):
            EngineSettings.from_env(clean_env)

    def test_backends_need_credentials(self, clean_env, monkeypatch):
        monkeypatch.setenv("GENERATION_BACKEND", "openai")
        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            EngineSettings.from_env(clean_env)

        monkeypatch.setenv("GENERATION_BACKEND", "template")
        monkeypatch.setenv("PERSISTENCE_BACKEND", "supabase")
        with pytest.raises(ValueError, match="SUPABASE_URL"):
            EngineSettings.from_env(clean_env)


class TestBuildEngine:
    """Test suite for build_engine()."""

    def test_default_collaborators(self):
        engine = build_engine(EngineSettings(random_seed=3))
        assert isinstance(engine.persistence, InMemoryPersistence)
        assert isinstance(engine.connectivity, ManualConnectivity)
        assert isinstance(engine.dispatcher.generator, TemplateResponseGenerator)
        assert engine.queue.overflow_policy is OverflowPolicy.REJECT

    def test_probe_and_openai_backends(self):
        settings = EngineSettings(
            generation_backend="openai",
            openai_api_key="sk-test",
            openai_model="test-model",
            connectivity_mode="probe",
            connectivity_probe_host="example.org",
            offline_queue_overflow="drop_oldest",
            offline_queue_max_size=10,
        )
        engine = build_engine(settings)

        assert isinstance(engine.connectivity, SocketConnectivityMonitor)
        assert engine.connectivity.host == "example.org"
        assert isinstance(engine.dispatcher.generator, OpenAIResponseGenerator)
        assert engine.dispatcher.generator.model == "test-model"
        assert engine.queue.max_size == 10
        assert engine.queue.overflow_policy is OverflowPolicy.DROP_OLDEST

    def test_overrides_win(self, mock_openai_client):
        persistence = InMemoryPersistence()
        generator = OpenAIResponseGenerator(client=mock_openai_client)
        engine = build_engine(EngineSettings(), persistence=persistence, generator=generator)
        assert engine.persistence is persistence
        assert engine.dispatcher.generator is generator

    def test_supabase_backend_uses_given_client(self):
        client = object()
        settings = EngineSettings(
            persistence_backend="supabase",
            supabase_url="https://example.supabase.co",
            supabase_service_key="service-key",
            supabase_kv_table="engine_kv",
        )
        engine = build_engine(settings, supabase_client=client)

        assert isinstance(engine.persistence, SupabasePersistence)
        assert engine.persistence.supabase is client
        assert engine.persistence.table == "engine_kv"

    def test_supabase_backend_without_client(self):
        settings = EngineSettings(
            persistence_backend="supabase",
            supabase_url="https://example.supabase.co",
            supabase_service_key="service-key",
        )
        with pytest.raises(ValueError, match="supabase_client"):
            build_engine(settings)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
