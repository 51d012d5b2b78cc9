"""Application settings read from the environment (and `.env`, via main.py)."""

import os
from dataclasses import dataclass
from typing import Mapping, Optional


def _get_int(env: Mapping[str, str], name: str, default: Optional[int]) -> Optional[int]:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name}={raw!r} must be an integer") from exc
    if value < 0:
        raise RuntimeError(f"{name}={raw!r} must not be negative")
    return value


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AppConfig:
    """Runtime configuration for the story server.

    Attributes:
        openai_api_key: Enables the AI co-author when present.
        openai_model: Model used for story generation.
        database_dir: Enables SQLite persistence under this directory when set.
        database_reset: Wipe the database on startup.
        session_idle_timeout: Seconds of inactivity before a session is evicted.
        session_sweep_interval: Seconds between idle-session sweeps.
        cache_ttl: Seconds an ephemeral session cache entry lives without writes.
        ai_trigger_every: User segments between AI contributions.
        ai_context_segments: Recent segments handed to the generator.
        invite_base_url: Default base URL for invite links.
        invite_token_ttl: Invite token lifetime in seconds (None = never expires).
        invite_max_per_session: Tokens kept per session (0 = unbounded).
        log_level: Root logging level name.
    """

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-5-mini"
    database_dir: Optional[str] = None
    database_reset: bool = False
    session_idle_timeout: int = 86_400
    session_sweep_interval: int = 300
    cache_ttl: int = 3_600
    ai_trigger_every: int = 3
    ai_context_segments: int = 20
    invite_base_url: str = "http://localhost:5173"
    invite_token_ttl: Optional[int] = None
    invite_max_per_session: int = 50
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AppConfig":
        env = os.environ if env is None else env
        trigger_every = _get_int(env, "AI_TRIGGER_EVERY", 3)
        if trigger_every < 1:
            raise RuntimeError("AI_TRIGGER_EVERY must be at least 1")
        return cls(
            openai_api_key=(env.get("OPENAI_API_KEY") or "").strip() or None,
            openai_model=(env.get("OPENAI_MODEL") or "").strip() or cls.openai_model,
            database_dir=(env.get("DATABASE_DIR") or "").strip() or None,
            database_reset=_get_bool(env, "DATABASE_RESET", False),
            session_idle_timeout=_get_int(env, "SESSION_IDLE_TIMEOUT_SECONDS", 86_400),
            session_sweep_interval=_get_int(env, "SESSION_SWEEP_INTERVAL_SECONDS", 300),
            cache_ttl=_get_int(env, "SESSION_CACHE_TTL_SECONDS", 3_600),
            ai_trigger_every=trigger_every,
            ai_context_segments=_get_int(env, "AI_CONTEXT_SEGMENTS", 20),
            invite_base_url=(env.get("INVITE_BASE_URL") or "").strip() or cls.invite_base_url,
            invite_token_ttl=_get_int(env, "INVITE_TOKEN_TTL_SECONDS", None),
            invite_max_per_session=_get_int(env, "INVITE_MAX_PER_SESSION", 50),
            log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
        )
