import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv(override=False)

DEFAULT_EXTERNAL_USER_ID = "pg-test-1434803e-a3dd-4458-b954-2c0c312cad87"


def _as_bool(raw: str | None, default: bool) -> bool:
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(raw: str | None, default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    anthropic_api_key: str | None
    anthropic_model: str
    anthropic_api_base_url: str
    anthropic_timeout_seconds: int
    chat_max_tokens: int
    followup_max_tokens: int
    composio_api_key: str | None
    composio_api_base_url: str
    composio_timeout_seconds: int
    default_external_user_id: str
    auth_config_ids: dict[str, str]
    link_callback_url: str
    canvas_base_url: str | None
    canvas_api_key: str | None
    orchestrator_mode: str
    assistant_timezone: str
    strict_tenancy: bool
    fish_api_key: str | None
    fish_voice_model_id: str | None
    fish_api_base_url: str
    speech_timeout_seconds: int
    log_level: str


def _auth_config_ids() -> dict[str, str]:
    env_names = {
        "gmail": "COMPOSIO_GMAIL_AUTH_CONFIG_ID",
        "googlecalendar": "COMPOSIO_GCALENDAR_AUTH_CONFIG_ID",
        "googlemeetings": "COMPOSIO_GMEET_AUTH_CONFIG_ID",
        "canvas": "COMPOSIO_CANVAS_AUTH_CONFIG_ID",
        "zoom": "COMPOSIO_ZOOM_AUTH_CONFIG_ID",
    }
    out: dict[str, str] = {}
    for service, env_name in env_names.items():
        value = (os.getenv(env_name) or "").strip()
        if value:
            out[service] = value
    return out


def load_settings() -> Settings:
    mode = os.getenv("ORCHESTRATOR_MODE", "capability").strip().lower()
    if mode not in {"capability", "intent"}:
        mode = "capability"
    return Settings(
        anthropic_api_key=(os.getenv("ANTHROPIC_API_KEY") or None),
        anthropic_model=os.getenv("ANTHROPIC_MODEL", "claude-3-5-sonnet-20241022"),
        anthropic_api_base_url=os.getenv(
            "ANTHROPIC_API_BASE_URL", "https://api.anthropic.com/v1"
        ),
        anthropic_timeout_seconds=_as_int(os.getenv("ANTHROPIC_TIMEOUT_SECONDS"), 60),
        chat_max_tokens=max(256, _as_int(os.getenv("CHAT_MAX_TOKENS"), 2000)),
        followup_max_tokens=max(256, _as_int(os.getenv("FOLLOWUP_MAX_TOKENS"), 3000)),
        composio_api_key=(os.getenv("COMPOSIO_API_KEY") or None),
        composio_api_base_url=os.getenv(
            "COMPOSIO_API_BASE_URL", "https://backend.composio.dev/api/v3"
        ),
        composio_timeout_seconds=_as_int(os.getenv("COMPOSIO_TIMEOUT_SECONDS"), 30),
        default_external_user_id=(
            os.getenv("COMPOSIO_EXTERNAL_USER_ID") or DEFAULT_EXTERNAL_USER_ID
        ),
        auth_config_ids=_auth_config_ids(),
        link_callback_url=os.getenv(
            "COMPOSIO_LINK_CALLBACK_URL", "http://localhost:5173/connected"
        ),
        canvas_base_url=(os.getenv("CANVAS_BASE_URL") or None),
        canvas_api_key=(os.getenv("CANVAS_API_KEY") or None),
        orchestrator_mode=mode,
        assistant_timezone=os.getenv("ASSISTANT_TIMEZONE", "America/Los_Angeles"),
        strict_tenancy=_as_bool(os.getenv("STRICT_TENANCY"), False),
        fish_api_key=(os.getenv("FISH_API_KEY") or None),
        fish_voice_model_id=(os.getenv("FISH_VOICE_MODEL_ID") or None),
        fish_api_base_url=os.getenv("FISH_API_BASE_URL", "https://api.fish.audio/v1"),
        speech_timeout_seconds=_as_int(os.getenv("SPEECH_TIMEOUT_SECONDS"), 60),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


settings = load_settings()
