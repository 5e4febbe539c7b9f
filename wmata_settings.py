# wmata_settings.py
#
# Runtime configuration for the WMATA alert bot.
# - Read once from the environment (a local .env file is honoured)
# - Frozen Settings object handed to every component
#
# REQUIRED env vars:
#   WMATA_API_PRIMARY_KEY
#   WMATA_API_RAIL_INCIDENTS_URL
#   WMATA_API_BUS_INCIDENTS_URL
#   THREADS_USER_ID          (only when ENABLE_THREADS_POSTING=true)
#   THREADS_ACCESS_TOKEN     (only when ENABLE_THREADS_POSTING=true)
#
# OPTIONAL env vars:
#   WMATA_API_ELEVATOR_INCIDENTS_URL
#   THREADS_BASE_URL, THREADS_TIMEOUT_MS
#   POST_MODE=per_incident|summary
#   CHECK_INTERVAL_MINUTES, POST_DELAY_MS
#   ENABLE_THREADS_POSTING=true|false
#   TEST_POST=true
#   LOG_LEVEL
#
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from wmata_errors import ConfigError


# ----------------------------
# Defaults
# ----------------------------
DEFAULT_THREADS_BASE_URL = "https://graph.threads.net/v1.0"
DEFAULT_THREADS_TIMEOUT_MS = 5000
FEED_TIMEOUT_MS = 5000
DEFAULT_CHECK_INTERVAL_MINUTES = 5
DEFAULT_POST_DELAY_MS = 1000

MODE_PER_INCIDENT = "per_incident"
MODE_SUMMARY = "summary"
POST_MODES = (MODE_PER_INCIDENT, MODE_SUMMARY)
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# category -> list field in that feed's JSON response
FEED_KEYS = {
    "rail": "Incidents",
    "bus": "BusIncidents",
    "elevator": "ElevatorIncidents",
}


@dataclass(frozen=True)
class FeedSource:
    category: str
    url: str
    expected_key: str


@dataclass(frozen=True)
class Settings:
    """Runtime configuration loaded from environment variables."""

    wmata_api_key: str
    feeds: Tuple[FeedSource, ...]

    threads_user_id: str = ""
    threads_access_token: str = ""
    threads_base_url: str = DEFAULT_THREADS_BASE_URL
    threads_timeout_ms: int = DEFAULT_THREADS_TIMEOUT_MS

    feed_timeout_ms: int = FEED_TIMEOUT_MS
    check_interval_minutes: int = DEFAULT_CHECK_INTERVAL_MINUTES
    post_delay_ms: int = DEFAULT_POST_DELAY_MS
    post_mode: str = MODE_PER_INCIDENT

    enable_posting: bool = True
    test_post: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from `environ` (defaults to os.environ).

        Every missing required variable is reported in a single ConfigError.
        """
        env = os.environ if environ is None else environ

        def get(name: str, default: str = "") -> str:
            return (env.get(name) or default).strip()

        api_key = get("WMATA_API_PRIMARY_KEY")
        rail_url = get("WMATA_API_RAIL_INCIDENTS_URL")
        bus_url = get("WMATA_API_BUS_INCIDENTS_URL")
        elevator_url = get("WMATA_API_ELEVATOR_INCIDENTS_URL")

        enable_posting = _env_flag(get("ENABLE_THREADS_POSTING"), True)
        test_post = _env_flag(get("TEST_POST"), False)
        user_id = get("THREADS_USER_ID")
        access_token = get("THREADS_ACCESS_TOKEN")

        required = [
            ("WMATA_API_PRIMARY_KEY", api_key),
            ("WMATA_API_RAIL_INCIDENTS_URL", rail_url),
            ("WMATA_API_BUS_INCIDENTS_URL", bus_url),
        ]
        if enable_posting or test_post:
            required += [
                ("THREADS_USER_ID", user_id),
                ("THREADS_ACCESS_TOKEN", access_token),
            ]
        missing = [k for k, v in required if not v]
        if missing:
            raise ConfigError(f"Missing required env vars: {', '.join(missing)}", missing=missing)

        log_level = get("LOG_LEVEL", "INFO").upper()
        if log_level not in LOG_LEVELS:
            raise ConfigError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")

        post_mode = get("POST_MODE", MODE_PER_INCIDENT).lower()
        if post_mode not in POST_MODES:
            raise ConfigError(f"POST_MODE must be one of {', '.join(POST_MODES)}, got {post_mode!r}")

        feeds = [
            FeedSource("rail", rail_url, FEED_KEYS["rail"]),
            FeedSource("bus", bus_url, FEED_KEYS["bus"]),
        ]
        if elevator_url:
            feeds.append(FeedSource("elevator", elevator_url, FEED_KEYS["elevator"]))

        return cls(
            wmata_api_key=api_key,
            feeds=tuple(feeds),
            threads_user_id=user_id,
            threads_access_token=access_token,
            threads_base_url=get("THREADS_BASE_URL", DEFAULT_THREADS_BASE_URL).rstrip("/"),
            threads_timeout_ms=_env_int(env, "THREADS_TIMEOUT_MS", DEFAULT_THREADS_TIMEOUT_MS),
            check_interval_minutes=_env_int(env, "CHECK_INTERVAL_MINUTES", DEFAULT_CHECK_INTERVAL_MINUTES),
            post_delay_ms=_env_int(env, "POST_DELAY_MS", DEFAULT_POST_DELAY_MS),
            post_mode=post_mode,
            enable_posting=enable_posting,
            test_post=test_post,
            log_level=log_level,
        )


def _env_flag(raw: str, default: bool) -> bool:
    if not raw:
        return default
    return raw.lower() == "true"


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {value}")
    return value


def load_settings(dotenv_path: Optional[str] = None) -> Settings:
    load_dotenv(dotenv_path)
    return Settings.from_env()
