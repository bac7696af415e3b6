"""Runtime options, loaded from defaults, an optional YAML file and the environment."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "CLUSTERSTATE_CONFIG"

_ENV_KEYS = {
    "batch_max_duration": "BATCH_MAX_DURATION",
    "batch_idle_duration": "BATCH_IDLE_DURATION",
    "request_timeout": "REQUEST_TIMEOUT",
    "log_level": "LOG_LEVEL",
}

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> float:
    """Parse seconds (``10``, ``"2.5"``) or Go-style durations (``"1m30s"``)."""
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    try:
        return float(text)
    except ValueError:
        pass
    pos = 0
    total = 0.0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or not text:
        raise ValueError(f"invalid duration {value!r}")
    return total


@dataclass
class Options:
    batch_max_duration: float = 10.0  # seconds
    batch_idle_duration: float = 1.0
    request_timeout: Optional[float] = None
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.batch_max_duration < 0:
            raise ValueError("batch_max_duration must be non-negative")
        if self.batch_idle_duration < 0:
            raise ValueError("batch_idle_duration must be non-negative")
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any], base: Optional["Options"] = None) -> "Options":
        current: Dict[str, Any] = {f.name: getattr(base or cls(), f.name) for f in fields(cls)}
        for key, raw in values.items():
            if key not in current:
                logger.warning(f"Ignoring unknown option '{key}'")
                continue
            try:
                current[key] = _coerce(key, raw)
            except ValueError as e:
                raise ValueError(f"option '{key}': {e}") from e
        return cls(**current)

    @classmethod
    def load(
        cls,
        path: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Options":
        """Defaults, then the YAML file, then environment variables."""
        environ = os.environ if environ is None else environ
        opts = cls()
        path = path or environ.get(CONFIG_PATH_ENV)
        if path:
            data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
            if not isinstance(data, dict):
                raise ValueError(f"config file {path} must contain a mapping")
            opts = cls.from_mapping(data, base=opts)
            logger.info(f"Loaded options from {path}")
        env_values = {key: environ[env] for key, env in _ENV_KEYS.items() if env in environ}
        if env_values:
            opts = cls.from_mapping(env_values, base=opts)
        return opts


def _coerce(key: str, raw: Any) -> Any:
    if key in ("batch_max_duration", "batch_idle_duration"):
        return parse_duration(raw)
    if key == "request_timeout":
        if raw is None or raw == "":
            return None
        return parse_duration(raw)
    if key == "log_level":
        return str(raw).upper()
    return raw
