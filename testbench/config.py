"""
Instance configuration. Read once at startup, then handed to whoever
needs it. Nothing below this module looks at os.environ.
"""
import os
from dataclasses import dataclass

DISCIPLINES = ("search", "removal")


def env(key, default):
    """Fetch an env var with a default, treat empty as missing."""
    value = os.getenv(key)
    if value is None or value == "":
        return default
    return value


def env_flag(key, default):
    return str(env(key, default)).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    instance_id: int = 0
    instance_name: str = "instance"
    base_url: str = "http://localhost"
    instance_port: int = 3000
    zero_is_unsuffixed: bool = True
    discipline: str = "search"
    hop_timeout: float = 10.0
    default_sequence: str = "1234"
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    def __post_init__(self):
        if self.discipline not in DISCIPLINES:
            raise ValueError(
                f"CHAIN_DISCIPLINE must be one of {', '.join(DISCIPLINES)}, "
                f"got {self.discipline!r}"
            )
        if self.hop_timeout <= 0:
            raise ValueError(f"HOP_TIMEOUT must be positive, got {self.hop_timeout}")

    @classmethod
    def from_env(cls):
        return cls(
            instance_id=int(env("INSTANCE_ID", "0")),
            instance_name=env("INSTANCE_NAME", "instance"),
            base_url=env("INSTANCE_BASE_URL", "http://localhost").rstrip("/"),
            instance_port=int(env("INSTANCE_PORT", "3000")),
            zero_is_unsuffixed=env_flag("ZERO_IS_UNSUFFIXED", "1"),
            discipline=env("CHAIN_DISCIPLINE", "search").lower(),
            hop_timeout=float(env("HOP_TIMEOUT", "10")),
            default_sequence=env("DEFAULT_SEQUENCE", "1234"),
            host=env("HOST", "0.0.0.0"),
            port=int(env("PORT", "3000")),
            log_level=env("LOG_LEVEL", "INFO").upper(),
        )
