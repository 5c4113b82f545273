"""Shared stepgraph configuration.

Reads ~/.stepgraph/configuration.json (or the file named by the
STEPGRAPH_CONFIG environment variable). A missing or unreadable file means
"use the defaults".

Example file:
    {
        "runtime": {"max_steps": 50},
        "events": {"history_size": 500, "subscriber_queue_size": 128},
        "logging": {"level": "DEBUG", "format": "json"}
    }
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_MAX_STEPS = 100
DEFAULT_EVENT_HISTORY_SIZE = 1000
DEFAULT_SUBSCRIBER_QUEUE_SIZE = 256

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

STEPGRAPH_CONFIG_FILE = Path.home() / ".stepgraph" / "configuration.json"


def get_config_path() -> Path:
    override = os.environ.get("STEPGRAPH_CONFIG")
    return Path(override) if override else STEPGRAPH_CONFIG_FILE


def get_stepgraph_config() -> dict[str, Any]:
    """Load the configuration file as a dict."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _section(name: str) -> dict[str, Any]:
    section = get_stepgraph_config().get(name, {})
    return section if isinstance(section, dict) else {}


def get_max_steps() -> int:
    return int(_section("runtime").get("max_steps", DEFAULT_MAX_STEPS))


def get_event_history_size() -> int:
    return int(_section("events").get("history_size", DEFAULT_EVENT_HISTORY_SIZE))


def get_subscriber_queue_size() -> int:
    return int(_section("events").get("subscriber_queue_size", DEFAULT_SUBSCRIBER_QUEUE_SIZE))


def get_log_level() -> str:
    return str(_section("logging").get("level", "INFO"))


def get_log_format() -> str:
    return str(_section("logging").get("format", "auto"))


# ---------------------------------------------------------------------------
# RuntimeConfig
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Runtime settings, defaulting from the configuration file."""

    max_steps: int = field(default_factory=get_max_steps)
    event_history_size: int = field(default_factory=get_event_history_size)
    subscriber_queue_size: int = field(default_factory=get_subscriber_queue_size)
    log_level: str = field(default_factory=get_log_level)
    log_format: str = field(default_factory=get_log_format)
