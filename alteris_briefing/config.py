"""Briefing configuration.

Lives in ~/.alteris/briefing.json next to the other Alteris files. Missing
keys fall back to defaults and a few settings can be overridden from the
environment. API keys are not stored here; the LLM client reads them from
env vars or the macOS Keychain.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".alteris" / "briefing.json"

ENV_OVERRIDES = {
    "ALTERIS_BRIEFING_PROVIDER": "provider",
    "ALTERIS_BRIEFING_MODEL": "model",
    "ALTERIS_BRIEFING_DB": "db_path",
    "ALTERIS_BRIEFING_BATCH_SIZE": "batch_size",
}

VALID_PROVIDERS = ("gemini", "claude", "ollama", "none")


@dataclass
class BriefingConfig:
    provider: str = "gemini"
    model: Optional[str] = None
    batch_size: int = 25
    max_emails: int = 500
    max_topics: int = 50
    lookback_hours: int = 24
    vip_emails: list[str] = field(default_factory=list)
    muted_senders: list[str] = field(default_factory=list)
    knowledge_entries: list[str] = field(default_factory=list)
    sender_preferences: str = ""
    db_path: Optional[str] = None
    flag_threshold: float = 0.5
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    verbosity: str = "standard"
    mode: str = "driving"

    def validate(self):
        if self.provider not in VALID_PROVIDERS:
            raise ValueError(f"Unsupported provider: {self.provider}. Use one of {', '.join(VALID_PROVIDERS)}.")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")
        if not 0.0 <= self.flag_threshold <= 1.0:
            raise ValueError(f"flag_threshold must be in [0, 1], got {self.flag_threshold}")

    @property
    def llm_enabled(self) -> bool:
        return self.provider != "none"

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


def _coerce(name: str, value: str) -> Any:
    f = BriefingConfig.__dataclass_fields__[name]
    if f.type in ("int", int):
        return int(value)
    return value


def config_from_dict(data: Dict[str, Any]) -> BriefingConfig:
    known = BriefingConfig.__dataclass_fields__
    unknown = sorted(set(data) - set(known))
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
    return BriefingConfig(**{k: v for k, v in data.items() if k in known})


def load_config(path: Path | None = None, env: Optional[Dict[str, str]] = None) -> BriefingConfig:
    """Defaults, then the JSON file, then environment overrides."""
    path = Path(path) if path else DEFAULT_CONFIG_PATH
    env = os.environ if env is None else env

    data: Dict[str, Any] = {}
    if path.exists():
        try:
            data = json.loads(path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Could not read %s, using defaults: %s", path, e)
            data = {}

    for var, key in ENV_OVERRIDES.items():
        if env.get(var):
            try:
                data[key] = _coerce(key, env[var])
            except ValueError:
                raise ValueError(f"{var} must be an integer, got {env[var]!r}") from None

    config = config_from_dict(data)
    config.validate()
    return config


def save_config(config: BriefingConfig, path: Path | None = None):
    """Save config to disk."""
    path = Path(path) if path else DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.to_dict(), indent=2))
