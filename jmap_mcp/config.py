"""Environment-driven settings for the JMAP tool server."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_SESSION_URL = "https://api.fastmail.com/jmap/session"

_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True)
class Settings:
    """Connection and behaviour settings, usually built with `from_env()`."""

    session_url: str = DEFAULT_SESSION_URL
    token: str = ""
    batch_references: bool = True  # False → run search stages one round trip at a time
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        """Build Settings from environment variables."""
        return cls(
            session_url=os.environ.get("JMAP_SESSION_URL", DEFAULT_SESSION_URL),
            token=os.environ.get("JMAP_TOKEN", ""),
            batch_references=(
                os.environ.get("JMAP_BATCH_REFERENCES", "true").strip().lower()
                not in _FALSE_VALUES
            ),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
