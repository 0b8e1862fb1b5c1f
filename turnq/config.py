from __future__ import annotations

import os
from dataclasses import dataclass


DEFAULT_REDIS_URL = "redis://localhost:6379/0"


@dataclass(frozen=True, slots=True)
class Settings:
    """Process-wide configuration, built once at startup.

    `host_pin` is the shared secret for the advance endpoint; an empty value
    disables the header check.
    """

    redis_url: str = DEFAULT_REDIS_URL
    host_pin: str = ""
    key_prefix: str = "turnq"
    log_level: str = "INFO"


def load_settings() -> Settings:
    # Local runs may keep these in a repo .env; real env vars win.
    from dotenv import load_dotenv

    load_dotenv(override=False)

    return Settings(
        redis_url=os.environ.get("REDIS_URL", DEFAULT_REDIS_URL),
        host_pin=os.environ.get("TURNQ_HOST_PIN", ""),
        key_prefix=os.environ.get("TURNQ_KEY_PREFIX", "turnq"),
        log_level=os.environ.get("TURNQ_LOG_LEVEL", "INFO").upper(),
    )
