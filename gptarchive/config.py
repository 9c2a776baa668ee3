from __future__ import annotations

import os
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, TypeVar

from gptarchive.core import json as jsonutil
from gptarchive.core.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_DELAY, DEFAULT_MAX_RETRIES, BackoffPolicy
from gptarchive.errors import ConfigError
from gptarchive.paths import CONFIG_HOME, DEFAULT_OUTPUT_DIR

T = TypeVar("T")

DEFAULT_CONFIG_NAME = "config.json"
DEFAULT_CONCURRENCY = 3
DEFAULT_DELAY_MS = 500

_ALLOWED_KEYS = {
    "output_dir",
    "concurrency",
    "delay_ms",
    "max_retries",
    "retry_base",
    "retry_max",
    "honor_retry_after",
}

# env var -> (config key, parser)
_ENV_OVERRIDES: dict[str, tuple[str, Callable[[str], Any]]] = {
    "GPTARCHIVE_OUTPUT": ("output_dir", lambda raw: Path(raw).expanduser()),
    "GPTARCHIVE_CONCURRENCY": ("concurrency", int),
    "GPTARCHIVE_DELAY_MS": ("delay_ms", int),
    "GPTARCHIVE_MAX_RETRIES": ("max_retries", int),
    "GPTARCHIVE_RETRY_BASE": ("retry_base", float),
    "GPTARCHIVE_RETRY_MAX": ("retry_max", float),
}


@dataclass(frozen=True)
class Config:
    output_dir: Path = DEFAULT_OUTPUT_DIR
    concurrency: int = DEFAULT_CONCURRENCY
    delay_ms: int = DEFAULT_DELAY_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_base: float = DEFAULT_BASE_DELAY
    retry_max: float = DEFAULT_MAX_DELAY
    honor_retry_after: bool = True
    path: Path | None = None

    @property
    def delay(self) -> float:
        """Inter-request delay in seconds."""
        return self.delay_ms / 1000

    def policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            max_retries=self.max_retries,
            base_delay=self.retry_base,
            max_delay=self.retry_max,
            honor_retry_after=self.honor_retry_after,
        )

    def with_overrides(self, **overrides: Any) -> Config:
        """Apply CLI options; ``None`` values leave the current setting alone."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return _validated(replace(self, **changes))

    def as_dict(self) -> dict[str, Any]:
        return {
            "output_dir": str(self.output_dir),
            "concurrency": self.concurrency,
            "delay_ms": self.delay_ms,
            "max_retries": self.max_retries,
            "retry_base": self.retry_base,
            "retry_max": self.retry_max,
            "honor_retry_after": self.honor_retry_after,
        }


def config_path(explicit: Path | None = None) -> Path:
    if explicit:
        return explicit.expanduser()
    env_path = os.environ.get("GPTARCHIVE_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return CONFIG_HOME / DEFAULT_CONFIG_NAME


def _ensure_keys(data: Mapping[str, Any], *, allowed: Iterable[str], context: str) -> None:
    unknown = set(data.keys()) - set(allowed)
    if unknown:
        keys = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown {context} key(s): {keys}")


def _typed(raw: Mapping[str, Any], key: str, kind: type[T] | tuple[type, ...], default: T) -> T:
    value = raw.get(key, default)
    if isinstance(value, bool) and kind is not bool:
        raise ConfigError(f"Config '{key}' has invalid value {value!r}")
    if not isinstance(value, kind):
        raise ConfigError(f"Config '{key}' has invalid value {value!r}")
    return value  # type: ignore[return-value]


def _validated(config: Config) -> Config:
    if config.concurrency < 1:
        raise ConfigError("Config 'concurrency' must be at least 1")
    if config.delay_ms < 0:
        raise ConfigError("Config 'delay_ms' must not be negative")
    if config.max_retries < 0:
        raise ConfigError("Config 'max_retries' must not be negative")
    if config.retry_base <= 0 or config.retry_max <= 0:
        raise ConfigError("Retry delays must be positive")
    return config


def _parse_file(path: Path) -> Config:
    try:
        raw = jsonutil.loads(path.read_bytes())
    except ValueError as exc:
        raise ConfigError(f"Config {path} is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError("Config payload must be a JSON object")
    _ensure_keys(raw, allowed=_ALLOWED_KEYS, context="config")
    defaults = Config()
    output_dir = _typed(raw, "output_dir", str, str(defaults.output_dir))
    if not output_dir.strip():
        raise ConfigError("Config 'output_dir' must be a non-empty string")
    return Config(
        output_dir=Path(output_dir).expanduser(),
        concurrency=_typed(raw, "concurrency", int, defaults.concurrency),
        delay_ms=_typed(raw, "delay_ms", int, defaults.delay_ms),
        max_retries=_typed(raw, "max_retries", int, defaults.max_retries),
        retry_base=float(_typed(raw, "retry_base", (int, float), defaults.retry_base)),
        retry_max=float(_typed(raw, "retry_max", (int, float), defaults.retry_max)),
        honor_retry_after=_typed(raw, "honor_retry_after", bool, defaults.honor_retry_after),
        path=path,
    )


def _apply_env(config: Config, environ: Mapping[str, str]) -> Config:
    changes: dict[str, Any] = {}
    for var, (key, parse) in _ENV_OVERRIDES.items():
        raw = environ.get(var)
        if not raw:
            continue
        try:
            changes[key] = parse(raw)
        except ValueError as exc:
            raise ConfigError(f"{var} has invalid value {raw!r}") from exc
    return replace(config, **changes)


def load_config(path: Path | None = None, *, environ: Mapping[str, str] | None = None) -> Config:
    """Defaults, then the optional config file, then environment overrides.

    A missing config file is not an error; a malformed one is.
    """
    env = os.environ if environ is None else environ
    resolved = config_path(path)
    config = _parse_file(resolved) if resolved.is_file() else Config(path=resolved)
    return _validated(_apply_env(config, env))


__all__ = ["Config", "config_path", "load_config"]
