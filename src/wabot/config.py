from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_BLOCKED_LINK_PATTERNS = (
    "chat.whatsapp.com/",
    "wa.me/",
    "https://",
    "http://",
    "www.",
)


@dataclass(frozen=True)
class Settings:
    gateway_url: str
    owner_number: str
    bot_number: str
    store_path: Path
    gateway_token: str = ""
    webhook_host: str = "0.0.0.0"
    webhook_port: int = 8080
    bot_name: str = "Wabot"
    bot_lid: str = ""
    command_prefix: str = "!"
    secret_prefix: str = "$$"
    log_dir: Path | None = None
    log_level: str = "info"
    gemini_api_key: str = ""
    gemini_base_url: str = ""
    gemini_model: str = "gemini-1.5-flash-latest"
    respond_to_all: bool = False
    command_cooldown_sec: float = 5.0
    spam_window_sec: float = 10.0
    spam_max_messages: int = 5
    link_warn_max: int = 5
    blocked_link_patterns: tuple[str, ...] = DEFAULT_BLOCKED_LINK_PATTERNS
    ephemeral_ttl_sec: float = 60.0
    history_cap: int = 20
    ai_input_budget: int = 8000
    quoted_snippet_chars: int = 300
    typing_duration_sec: float = 6.0
    xp_per_message: int = 5
    sticker_reaction_chance: float = 0.3
    reveal_self_destruct_sec: float = 30.0
    ai_cache_size: int = 100
    ai_cache_ttl_sec: float = 300.0
    ai_timeout_sec: float = 60.0
    ai_max_response_chars: int = 2000

    @staticmethod
    def load(path: Path = Path("passwords.txt")) -> "Settings":
        values = _parse_passwords_file(path)
        for key in list(values) + list(_OPTIONAL_KEYS):
            env_value = os.environ.get(key)
            if env_value is not None:
                values[key] = env_value

        gateway_url = values.get("GATEWAY_URL", "").strip()
        owner_number = values.get("OWNER_NUMBER", "").strip()
        bot_number = values.get("BOT_NUMBER", "").strip()
        if not gateway_url:
            raise RuntimeError("GATEWAY_URL is required in passwords.txt.")
        if not owner_number:
            raise RuntimeError("OWNER_NUMBER is required in passwords.txt.")
        if not bot_number:
            raise RuntimeError("BOT_NUMBER is required in passwords.txt.")

        log_dir = values.get("LOG_DIR", "logs").strip()
        patterns = values.get("BLOCKED_LINK_PATTERNS", "").strip()
        return Settings(
            gateway_url=gateway_url,
            owner_number=owner_number,
            bot_number=bot_number,
            store_path=Path(values.get("STORE_PATH", "data/wabot.msgpack")),
            gateway_token=values.get("GATEWAY_TOKEN", "").strip(),
            webhook_host=values.get("WEBHOOK_HOST", "0.0.0.0").strip(),
            webhook_port=int(values.get("WEBHOOK_PORT", "8080")),
            bot_name=values.get("BOT_NAME", "Wabot").strip() or "Wabot",
            bot_lid=values.get("BOT_LID", "").strip(),
            command_prefix=values.get("COMMAND_PREFIX", "!").strip() or "!",
            secret_prefix=values.get("SECRET_PREFIX", "$$").strip() or "$$",
            log_dir=Path(log_dir) if log_dir else None,
            log_level=values.get("LOG_LEVEL", "info").strip().lower() or "info",
            gemini_api_key=values.get("GEMINI_API_KEY", "").strip(),
            gemini_base_url=values.get("GEMINI_BASE_URL", "").strip(),
            gemini_model=values.get("GEMINI_MODEL", "gemini-1.5-flash-latest").strip(),
            respond_to_all=_parse_bool(values.get("RESPOND_TO_ALL", "false")),
            command_cooldown_sec=float(values.get("COMMAND_COOLDOWN_SEC", "5")),
            spam_window_sec=float(values.get("SPAM_WINDOW_SEC", "10")),
            spam_max_messages=int(values.get("SPAM_MAX_MESSAGES", "5")),
            link_warn_max=int(values.get("LINK_WARN_MAX", "5")),
            blocked_link_patterns=tuple(p.strip() for p in patterns.split(",") if p.strip())
            or DEFAULT_BLOCKED_LINK_PATTERNS,
            ephemeral_ttl_sec=float(values.get("EPHEMERAL_TTL_SEC", "60")),
            history_cap=int(values.get("HISTORY_CAP", "20")),
            ai_input_budget=int(values.get("AI_INPUT_BUDGET", "8000")),
            quoted_snippet_chars=int(values.get("QUOTED_SNIPPET_CHARS", "300")),
            typing_duration_sec=float(values.get("TYPING_DURATION_SEC", "6")),
            xp_per_message=int(values.get("XP_PER_MESSAGE", "5")),
            sticker_reaction_chance=float(values.get("STICKER_REACTION_CHANCE", "0.3")),
            reveal_self_destruct_sec=float(values.get("REVEAL_SELF_DESTRUCT_SEC", "30")),
            ai_cache_size=int(values.get("AI_CACHE_SIZE", "100")),
            ai_cache_ttl_sec=float(values.get("AI_CACHE_TTL_SEC", "300")),
            ai_timeout_sec=float(values.get("AI_TIMEOUT_SEC", "60")),
            ai_max_response_chars=int(values.get("AI_MAX_RESPONSE_CHARS", "2000")),
        )


_OPTIONAL_KEYS = (
    "GATEWAY_URL",
    "GATEWAY_TOKEN",
    "OWNER_NUMBER",
    "BOT_NUMBER",
    "BOT_NAME",
    "BOT_LID",
    "GEMINI_API_KEY",
    "GEMINI_MODEL",
    "STORE_PATH",
    "LOG_DIR",
    "LOG_LEVEL",
    "WEBHOOK_PORT",
    "RESPOND_TO_ALL",
)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_passwords_file(path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    if not path.exists():
        return values
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip().upper()] = value.strip()
    return values
