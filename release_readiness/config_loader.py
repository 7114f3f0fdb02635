"""Configuration helpers for the release readiness runtime."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import yaml

from .autotest_status import DEFAULT_TEST_BOTS
from .patterns import (
    DEFAULT_ESCALATION_MENTIONS,
    DEFAULT_NEGATED_PHRASES,
    DEFAULT_NEGATION_WINDOW,
    DEFAULT_SUMMARY_HEADER_PATTERNS,
)
from .seed_collector import DEFAULT_SEED_QUERIES
from .semantic_classifier import DEFAULT_CONFIDENCE_FLOOR
from .tools.ollama_tools import DEFAULT_BASE_URL, DEFAULT_MODEL

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
CONFIG_PATH = PACKAGE_ROOT / "config.yaml"

REQUIRED_ENV_VARS = [
    "SLACK_USER_TOKEN",
]


@dataclass(frozen=True)
class RuntimeConfig:
    slack_user_token: str
    slack_channel: str
    jira_base_url: str = ""
    slack_timeout_seconds: float = 15.0
    ollama_enabled: bool = True
    ollama_base_url: str = DEFAULT_BASE_URL
    ollama_model: str = DEFAULT_MODEL
    probe_timeout_seconds: float = 5.0
    generate_timeout_seconds: float = 60.0
    semantic_confidence_floor: int = DEFAULT_CONFIDENCE_FLOOR
    semantic_concurrency: int = 3
    negation_window: int = DEFAULT_NEGATION_WINDOW
    max_threads: int = 50
    max_messages: int = 200
    seed_queries: tuple[str, ...] = DEFAULT_SEED_QUERIES
    negated_phrases: tuple[str, ...] = DEFAULT_NEGATED_PHRASES
    escalation_mentions: tuple[str, ...] = DEFAULT_ESCALATION_MENTIONS
    summary_header_patterns: tuple[str, ...] = DEFAULT_SUMMARY_HEADER_PATTERNS
    test_bots: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TEST_BOTS))
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 0.5
    retry_max_delay_seconds: float = 2.0


def load_config(path: Path | None = None) -> dict:
    """Load the YAML configuration file."""
    config_path = path or CONFIG_PATH
    if not config_path.exists():
        raise FileNotFoundError(f"Missing config.yaml at {config_path}")
    with config_path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def ensure_env_vars(vars_to_check: Iterable[str] | None = None) -> None:
    """Ensure environment variables are set before talking to Slack."""
    missing = [var for var in (vars_to_check or REQUIRED_ENV_VARS) if not os.getenv(var)]
    if missing:
        raise RuntimeError(
            "Missing required environment variables: " + ", ".join(sorted(missing))
        )


def _resolve_env_value(raw_value: str, *, fallback_env_var: str) -> str:
    value = raw_value
    if value.startswith("${") and value.endswith("}"):
        value = os.getenv(value[2:-1], "")
    if not value:
        value = os.getenv(fallback_env_var, "")
    return value


def _string_tuple(value: Any, default: tuple[str, ...]) -> tuple[str, ...]:
    if not isinstance(value, list):
        return default
    items = tuple(str(item).strip() for item in value if str(item).strip())
    return items or default


def load_runtime_config(config: dict) -> RuntimeConfig:
    slack = config.get("slack", {}) or {}
    jira = config.get("jira", {}) or {}
    ollama = config.get("ollama", {}) or {}
    detection = config.get("detection", {}) or {}
    autotests = config.get("autotests", {}) or {}
    retry = config.get("retry", {}) or {}

    user_token = _resolve_env_value(
        str(slack.get("user_token", "")),
        fallback_env_var="SLACK_USER_TOKEN",
    )
    channel = _resolve_env_value(
        str(slack.get("channel", "")),
        fallback_env_var="SLACK_CHANNEL",
    ).lstrip("#")
    if not user_token:
        raise RuntimeError("slack.user_token must be set in config.yaml or env")
    if not channel:
        raise RuntimeError("slack.channel must be set in config.yaml or env")
    jira_base_url = _resolve_env_value(
        str(jira.get("base_url", "")),
        fallback_env_var="JIRA_BASE_URL",
    ).rstrip("/")

    window = int(detection.get("negation_window", DEFAULT_NEGATION_WINDOW))
    if window < 0:
        raise RuntimeError("detection.negation_window must be >= 0")
    floor = int(detection.get("semantic_confidence_floor", DEFAULT_CONFIDENCE_FLOOR))
    if not 0 <= floor <= 100:
        raise RuntimeError("detection.semantic_confidence_floor must be within 0..100")

    raw_bots = autotests.get("test_bots") or {}
    test_bots = {str(bot).strip(): str(suite).strip() for bot, suite in raw_bots.items() if str(bot).strip()}

    return RuntimeConfig(
        slack_user_token=user_token,
        slack_channel=channel,
        jira_base_url=jira_base_url,
        slack_timeout_seconds=float(slack.get("timeout_seconds", 15.0)),
        ollama_enabled=bool(ollama.get("enabled", True)),
        ollama_base_url=_resolve_env_value(
            str(ollama.get("base_url", "")),
            fallback_env_var="OLLAMA_BASE_URL",
        ).rstrip("/")
        or DEFAULT_BASE_URL,
        ollama_model=_resolve_env_value(
            str(ollama.get("model", "")),
            fallback_env_var="OLLAMA_MODEL",
        )
        or DEFAULT_MODEL,
        probe_timeout_seconds=min(float(ollama.get("probe_timeout_seconds", 5.0)), 5.0),
        generate_timeout_seconds=min(float(ollama.get("generate_timeout_seconds", 60.0)), 60.0),
        semantic_confidence_floor=floor,
        semantic_concurrency=max(1, int(ollama.get("concurrency", 3))),
        negation_window=window,
        max_threads=int(detection.get("max_threads", 50)),
        max_messages=int(detection.get("max_messages", 200)),
        seed_queries=_string_tuple(detection.get("seed_queries"), DEFAULT_SEED_QUERIES),
        negated_phrases=_string_tuple(detection.get("negated_phrases"), DEFAULT_NEGATED_PHRASES),
        escalation_mentions=_string_tuple(detection.get("escalation_mentions"), DEFAULT_ESCALATION_MENTIONS),
        summary_header_patterns=_string_tuple(
            detection.get("summary_header_patterns"),
            DEFAULT_SUMMARY_HEADER_PATTERNS,
        ),
        test_bots=test_bots or dict(DEFAULT_TEST_BOTS),
        retry_max_attempts=int(retry.get("max_attempts", 3)),
        retry_base_delay_seconds=float(retry.get("base_delay_seconds", 0.5)),
        retry_max_delay_seconds=float(retry.get("max_delay_seconds", 2.0)),
    )
