"""
Run configuration.

Settings come from a YAML file (``.spek.yaml`` in the working directory by
default) and may be overridden from the environment.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from spek.spek_datatypes import InvalidOptions, validate_timeout, validate_random

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = ".spek.yaml"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class SpekConfig:
    random: bool = False
    # Seconds; 0 disables timeouts.
    timeout: float = 2.0
    seed: Optional[int] = None
    log_level: str = "WARNING"

    def toggled_random(self) -> 'SpekConfig':
        return dataclasses.replace(self, random=not self.random)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> 'SpekConfig':
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidOptions(f"unknown config key(s): {', '.join(unknown)}")
        values = dict(data)
        if "random" in values:
            values["random"] = validate_random(values["random"])
            if values["random"] is None:
                del values["random"]
        if "timeout" in values:
            values["timeout"] = validate_timeout(values["timeout"])
            if values["timeout"] is None:
                del values["timeout"]
        if values.get("seed") is not None:
            seed = values["seed"]
            if isinstance(seed, bool) or not isinstance(seed, int):
                raise InvalidOptions(f"seed must be an integer, not {seed!r}")
        if "log_level" in values:
            level = str(values["log_level"]).upper()
            if level not in _LOG_LEVELS:
                raise InvalidOptions(f"log_level must be one of {', '.join(_LOG_LEVELS)}, not {values['log_level']!r}")
            values["log_level"] = level
        return cls(**values)


def _env_bool(name: str, raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    raise InvalidOptions(f"{name} must be a boolean flag, not {raw!r}")


def _env_overrides(environ: Mapping[str, str]) -> dict:
    out: dict = {}
    if "SPEK_RANDOM" in environ:
        out["random"] = _env_bool("SPEK_RANDOM", environ["SPEK_RANDOM"])
    if "SPEK_SEED" in environ:
        try:
            out["seed"] = int(environ["SPEK_SEED"])
        except ValueError:
            raise InvalidOptions(f"SPEK_SEED must be an integer, not {environ['SPEK_SEED']!r}")
    if "SPEK_TIMEOUT" in environ:
        try:
            out["timeout"] = float(environ["SPEK_TIMEOUT"])
        except ValueError:
            raise InvalidOptions(f"SPEK_TIMEOUT must be a number, not {environ['SPEK_TIMEOUT']!r}")
    if "SPEK_LOG_LEVEL" in environ:
        out["log_level"] = environ["SPEK_LOG_LEVEL"]
    return out


def load_config(path: Optional[str | Path] = None,
                environ: Optional[Mapping[str, str]] = None) -> SpekConfig:
    """
    Build a SpekConfig from a YAML file plus environment overrides.

    - path: explicit config file; it must exist. When omitted, ``.spek.yaml``
      in the working directory is used if present.
    - environ: defaults to ``os.environ``.
    """
    data: dict = {}
    if path is not None:
        p = Path(path)
        if not p.is_file():
            raise InvalidOptions(f"config file not found: {p}")
    else:
        p = Path.cwd() / DEFAULT_CONFIG_FILE
        p = p if p.is_file() else None
    if p is not None:
        try:
            loaded = yaml.safe_load(p.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise InvalidOptions(f"could not parse {p}: {e}") from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise InvalidOptions(f"{p} must contain a mapping, not {type(loaded).__name__}")
        data.update(loaded)
        logger.debug("loaded config from %s", p)
    data.update(_env_overrides(os.environ if environ is None else environ))
    return SpekConfig.from_mapping(data)
