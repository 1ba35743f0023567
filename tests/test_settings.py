"""Tests for YAML settings loading and environment overrides."""
import pytest

from config.settings import (
    QueueConfig, Settings, SupabaseConfig, get_settings, load_settings, reset_settings,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    monkeypatch.delenv("KNITTED_CONFIG", raising=False)
    reset_settings()
    yield
    reset_settings()


class TestDefaults:

    def test_queue_defaults(self):
        cfg = QueueConfig()
        assert cfg.name == "profile_events"
        assert cfg.batch_size == 10
        assert cfg.scheduler_enabled is False

    def test_backends_inferred_from_url(self):
        assert Settings().queue_backend == "memory"
        assert Settings().follow_backend == "memory"

        remote = Settings(supabase=SupabaseConfig(url="https://proj.supabase.co"))
        assert remote.queue_backend == "supabase"
        assert remote.follow_backend == "supabase"

    def test_explicit_backend_wins(self):
        s = Settings(
            supabase=SupabaseConfig(url="https://proj.supabase.co"),
            queue=QueueConfig(backend="memory"),
        )
        assert s.queue_backend == "memory"
        assert s.follow_backend == "supabase"


class TestLoadSettings:

    def test_missing_file_gives_defaults(self, tmp_path):
        s = load_settings(str(tmp_path / "nope.yaml"))
        assert s.queue.name == "profile_events"
        assert s.supabase.url == ""

    def test_bundled_file_without_env(self):
        s = load_settings()
        assert s.supabase.url == ""
        assert s.supabase.service_role_key == ""
        assert s.queue_backend == "memory"

    def test_yaml_with_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("QUEUE_NAME", "follow_events")
        path = tmp_path / "settings.yaml"
        path.write_text(
            "supabase:\n"
            "  url: https://yaml.supabase.co\n"
            "  service_role_key: yaml-key\n"
            "  max_retries: 5\n"
            "queue:\n"
            "  name: ${QUEUE_NAME}\n"
            "  batch_size: 25\n"
            "  scheduler_enabled: true\n"
            "  poll_interval_seconds: 15\n"
            "backend:\n"
            "  procedure: apply_follow\n"
        )

        s = load_settings(str(path))

        assert s.supabase.url == "https://yaml.supabase.co"
        assert s.supabase.max_retries == 5
        assert s.queue.name == "follow_events"
        assert s.queue.batch_size == 25
        assert s.queue.scheduler_enabled is True
        assert s.queue.poll_interval_seconds == 15
        assert s.backend.procedure == "apply_follow"
        assert s.queue_backend == "supabase"

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text("supabase:\n  url: https://yaml.supabase.co\n  service_role_key: yaml-key\n")
        monkeypatch.setenv("SUPABASE_URL", "https://env.supabase.co")
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "env-key")

        s = load_settings(str(path))

        assert s.supabase.url == "https://env.supabase.co"
        assert s.supabase.service_role_key == "env-key"

    def test_config_path_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "other.yaml"
        path.write_text("app_name: Staging Worker\n")
        monkeypatch.setenv("KNITTED_CONFIG", str(path))

        assert get_settings().app_name == "Staging Worker"
        assert get_settings() is get_settings()
