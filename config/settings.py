"""
Configuration loader for the Knitted follow-event worker.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class SupabaseConfig:
    url: str = ""
    service_role_key: str = ""
    queue_schema: str = "pgmq_public"       # schema exposing pop/send/archive RPCs
    timeout_seconds: float = 30.0
    max_retries: int = 3                    # transport-level retries per request


@dataclass
class QueueConfig:
    backend: str = ""                       # "supabase" | "memory"; empty = infer from url
    name: str = "profile_events"
    batch_size: int = 10
    scheduler_enabled: bool = False         # run drains from inside the API process
    poll_interval_seconds: int = 60


@dataclass
class BackendConfig:
    type: str = ""                          # "supabase" | "memory"; empty = infer from url
    procedure: str = "handle_follow_action"


@dataclass
class Settings:
    app_name: str = "Knitted Follow Worker"
    debug: bool = False
    supabase: SupabaseConfig = field(default_factory=SupabaseConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)

    @property
    def queue_backend(self) -> str:
        if self.queue.backend:
            return self.queue.backend
        return "supabase" if self.supabase.url else "memory"

    @property
    def follow_backend(self) -> str:
        if self.backend.type:
            return self.backend.type
        return "supabase" if self.supabase.url else "memory"


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _apply_env_overrides(settings: Settings) -> None:
    """The hosting platform injects these two; they win over the YAML file."""
    url = os.environ.get("SUPABASE_URL")
    if url:
        settings.supabase.url = url
    key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
    if key:
        settings.supabase.service_role_key = key


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "KNITTED_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)

        if "supabase" in raw:
            sb = raw["supabase"] or {}
            settings.supabase = SupabaseConfig(
                url=sb.get("url", ""),
                service_role_key=sb.get("service_role_key", ""),
                queue_schema=sb.get("queue_schema", "pgmq_public"),
                timeout_seconds=float(sb.get("timeout_seconds", 30.0)),
                max_retries=int(sb.get("max_retries", 3)),
            )

        if "queue" in raw:
            q = raw["queue"] or {}
            settings.queue = QueueConfig(
                backend=q.get("backend", ""),
                name=q.get("name", "profile_events"),
                batch_size=int(q.get("batch_size", 10)),
                scheduler_enabled=bool(q.get("scheduler_enabled", False)),
                poll_interval_seconds=int(q.get("poll_interval_seconds", 60)),
            )

        if "backend" in raw:
            be = raw["backend"] or {}
            settings.backend = BackendConfig(
                type=be.get("type", ""),
                procedure=be.get("procedure", "handle_follow_action"),
            )

    # Unresolved ${VAR} placeholders mean the variable was never set
    for attr in ("url", "service_role_key"):
        if getattr(settings.supabase, attr).startswith("${"):
            setattr(settings.supabase, attr, "")

    _apply_env_overrides(settings)

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    global _settings
    _settings = None
