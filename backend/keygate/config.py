# keygate/config.py
import os
from pydantic import BaseModel
from dotenv import load_dotenv

load_dotenv()  # Load environment variables from .env file


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _env_int(name: str, default: int) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return int(raw)


class Settings(BaseModel):
    # General app settings
    APP_NAME: str = "Keygate License API"
    env: str = os.getenv("ENV", "dev")

    # Host & Port settings
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8000"))

    CORS_ORIGINS: list[str] = [
        o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()
    ]

    # Database (Tortoise URL); "memory" keeps everything in-process
    database_url: str = os.getenv("DATABASE_URL", "sqlite://db.sqlite3")
    generate_schemas: bool = _env_bool("GENERATE_SCHEMAS", "true")

    # Shared secret for the x-api-key header; unset means every protected route answers 401
    api_secret_key: str | None = os.getenv("API_SECRET_KEY") or None

    # Batch caps
    api_max_batch: int = _env_int("API_MAX_BATCH", 100)
    chat_max_batch: int = _env_int("CHAT_MAX_BATCH", 50)

    # HWID reset cooldowns per privilege tier
    fast_track_cooldown_seconds: int = _env_int("FAST_TRACK_COOLDOWN_SECONDS", 1)
    booster_cooldown_hours: int = _env_int("BOOSTER_COOLDOWN_HOURS", 12)
    premium_cooldown_hours: int = _env_int("PREMIUM_COOLDOWN_HOURS", 60)  # 2.5 days

    # Interaction windows
    pending_reset_ttl_seconds: int = _env_int("PENDING_RESET_TTL_SECONDS", 300)
    key_prompt_timeout_seconds: int = _env_int("KEY_PROMPT_TIMEOUT_SECONDS", 60)

    # Self-service trial keys (!getkey)
    trial_key_minutes: int = _env_int("TRIAL_KEY_MINUTES", 30)
    trial_key_cooldown_seconds: int = _env_int("TRIAL_KEY_COOLDOWN_SECONDS", 60)

    # Discord
    discord_token: str | None = os.getenv("DISCORD_TOKEN") or None
    discord_guild_id: int | None = _env_int("DISCORD_GUILD_ID", None)
    discord_owner_id: int | None = _env_int("DISCORD_OWNER_ID", None)
    log_channel_id: int | None = _env_int("LOG_CHANNEL_ID", None)

    # Role names mapped onto privilege tiers
    role_operator: str = os.getenv("ROLE_OPERATOR", "Whitelist")
    role_premium: str = os.getenv("ROLE_PREMIUM", "Premium")
    role_fast_track: str = os.getenv("ROLE_FAST_TRACK", "Reset Access")
    role_booster: str = os.getenv("ROLE_BOOSTER", "Server Booster")


settings = Settings()  # Instantiate configuration
