from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_MAX_DEPTH = 5
TRUTHY = {"1", "true", "yes", "on"}
FALSY = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class EngineSettings:
    max_depth: int = DEFAULT_MAX_DEPTH
    auto_complete: bool = False
    dev_mode: bool = False

    def __post_init__(self) -> None:
        if self.max_depth < 1:
            raise ValueError("max_depth must be at least 1.")


def load_settings() -> EngineSettings:
    return EngineSettings(
        max_depth=_int_env("PROJECT_MAX_DEPTH", DEFAULT_MAX_DEPTH),
        auto_complete=_bool_env("PROJECT_AUTO_COMPLETE", False),
        dev_mode=_bool_env("DEV_MODE", False),
    )


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}.") from None


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in TRUTHY:
        return True
    if value in FALSY:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}.")
