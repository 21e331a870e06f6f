"""
Configuration loader for the inbox triage pipeline.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

MIN_FETCH_INTERVAL_MS = 1000


@dataclass
class LLMConfig:
    provider: str = "openai"
    model: str = "gpt-4"
    api_key: str = ""
    analysis_temperature: float = 0.3
    response_temperature: float = 0.7
    max_tokens: int = 1024


@dataclass
class MailConfig:
    base_url: str = "https://gmail.googleapis.com/gmail/v1/users/me"
    timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 10.0


@dataclass
class QueueConfig:
    backend: str = "memory"             # "memory" for dev, "redis" for production
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "triage"
    consumer_group: str = "triage-workers"
    consumer_concurrency: int = 5       # max concurrent jobs per stage worker
    scheduler_interval: float = 1.0     # seconds between delayed/repeat scans
    claim_idle_ms: int = 60000          # reclaim unacked deliveries idle this long
    dedup_ttl_ms: int = 86400000
    failed_retention: int = 1000        # terminal failures kept per queue


@dataclass
class PipelineConfig:
    fetch_interval_ms: int = 300000
    fetch_max_results: int = 10
    fetch_on_register: bool = False     # first tick now instead of next boundary
    max_attempts: int = 3
    backoff_base_ms: int = 5000
    backoff_cap_ms: int = 300000

    def validate(self) -> None:
        if int(self.fetch_interval_ms) < MIN_FETCH_INTERVAL_MS:
            raise ValueError(
                f"fetch_interval_ms must be >= {MIN_FETCH_INTERVAL_MS}, "
                f"got {self.fetch_interval_ms}"
            )
        if self.fetch_max_results < 1:
            raise ValueError("fetch_max_results must be >= 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_base_ms <= 0:
            raise ValueError("backoff_base_ms must be positive")
        if self.backoff_cap_ms < self.backoff_base_ms:
            raise ValueError("backoff_cap_ms must be >= backoff_base_ms")


@dataclass
class Settings:
    app_name: str = "InboxTriage"
    debug: bool = False
    llm: LLMConfig = field(default_factory=LLMConfig)
    mail: MailConfig = field(default_factory=MailConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)


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


def _section(cls, raw: dict[str, Any]):
    """Build a config dataclass from a raw dict, ignoring unknown keys."""
    known = {k: v for k, v in (raw or {}).items() if k in cls.__dataclass_fields__}
    return cls(**known)


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "TRIAGE_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)

        if "llm" in raw:
            settings.llm = _section(LLMConfig, raw["llm"])
        if "mail" in raw:
            settings.mail = _section(MailConfig, raw["mail"])
        if "queue" in raw:
            settings.queue = _section(QueueConfig, raw["queue"])
        if "pipeline" in raw:
            pipeline = _section(PipelineConfig, raw["pipeline"])
            pipeline.fetch_interval_ms = int(pipeline.fetch_interval_ms)
            settings.pipeline = pipeline

    settings.pipeline.validate()

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
