"""
Process-wide settings read from STACKMAN_* environment variables.
"""
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .LABELS.keys import DEFAULT_LABEL_PREFIX, LabelKeys


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(env: Mapping[str, str], name: str, default: Optional[int]) -> Optional[int]:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    log_level: str = "WARNING"
    label_prefix: str = DEFAULT_LABEL_PREFIX
    # None lets the engine pick its own stop timeout.
    stop_timeout: Optional[int] = None
    engine_retries: int = 3
    project_name: Optional[str] = None
    # Pull images that are missing before `up`.
    pull_missing: bool = True

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            log_level=env.get("STACKMAN_LOG_LEVEL", "WARNING").upper(),
            label_prefix=env.get("STACKMAN_LABEL_PREFIX", DEFAULT_LABEL_PREFIX),
            stop_timeout=_env_int(env, "STACKMAN_STOP_TIMEOUT", None),
            engine_retries=max(1, _env_int(env, "STACKMAN_ENGINE_RETRIES", 3) or 1),
            project_name=env.get("STACKMAN_PROJECT_NAME") or None,
            pull_missing=_env_bool(env, "STACKMAN_PULL_MISSING", True),
        )

    def label_keys(self) -> LabelKeys:
        return LabelKeys.with_prefix(self.label_prefix)


settings = Settings.from_env()
