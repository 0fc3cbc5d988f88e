# backend/utils/config.py
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from proxy.policy import RetryPolicy
from proxy.upstream import DEFAULT_CHUNK_SIZE


def _int_env(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8080
    max_attempts: int = 3
    timeout_ms: int = 5000
    backoff_ms: int = 1000
    chunk_size: int = DEFAULT_CHUNK_SIZE
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            host=env.get("HOST", "").strip() or cls.host,
            port=_int_env(env, "PORT", cls.port, minimum=1),
            max_attempts=_int_env(env, "PROXY_MAX_ATTEMPTS", cls.max_attempts, minimum=1),
            timeout_ms=_int_env(env, "PROXY_TIMEOUT_MS", cls.timeout_ms, minimum=1),
            backoff_ms=_int_env(env, "PROXY_BACKOFF_MS", cls.backoff_ms),
            chunk_size=_int_env(env, "PROXY_CHUNK_SIZE", cls.chunk_size, minimum=1),
            log_level=(env.get("LOG_LEVEL", "").strip() or cls.log_level).upper(),
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            per_attempt_timeout=self.timeout_ms / 1000.0,
            backoff_delay=self.backoff_ms / 1000.0,
        )
