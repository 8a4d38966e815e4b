"""Environment-driven settings shared by both Lambda functions.

Every option comes from the function's environment (set by Terraform or the
console). Invalid numbers fall back to the documented default with a log
line instead of failing the invocation; only ``INSTANCE_ID`` is mandatory.
"""

import logging
import os
from dataclasses import dataclass

from .errors import ConfigError
from .logs import log_event

log = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"
DEFAULT_TABLE = "game-server-activity"
DEFAULT_IDLE_TIMEOUT = 600
DEFAULT_STARTUP_GRACE = 15
DEFAULT_GAME_PORT = 25565
DEFAULT_PROBE_TIMEOUT = 3.0
DEFAULT_STOP_GRACE = 30


def _env_int(environ, name, default, min_val, max_val):
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        log_event(log, "config_invalid", level=logging.WARNING, name=name, value=raw, default=default)
        return default
    if value < min_val or value > max_val:
        log_event(log, "config_out_of_range", level=logging.WARNING,
                  name=name, value=value, min=min_val, max=max_val, default=default)
        return default
    return value


def _env_float(environ, name, default):
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        log_event(log, "config_invalid", level=logging.WARNING, name=name, value=raw, default=default)
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class Settings:
    instance_id: str
    region: str = DEFAULT_REGION
    table_name: str = DEFAULT_TABLE
    idle_timeout_seconds: int = DEFAULT_IDLE_TIMEOUT
    startup_grace_minutes: int = DEFAULT_STARTUP_GRACE
    admin_role_id: str = ""
    public_key: str = ""
    application_id: str = ""
    game_port: int = DEFAULT_GAME_PORT
    query_port: int = DEFAULT_GAME_PORT
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    stop_grace_seconds: int = DEFAULT_STOP_GRACE
    graceful_stop_command: str = ""
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ=None):
        """Build settings from ``environ`` (defaults to ``os.environ``)."""
        env = os.environ if environ is None else environ

        instance_id = (env.get("INSTANCE_ID") or "").strip()
        if not instance_id:
            raise ConfigError("INSTANCE_ID is not set")

        game_port = _env_int(env, "GAME_PORT", DEFAULT_GAME_PORT, 1, 65535)
        return cls(
            instance_id=instance_id,
            region=env.get("AWS_REGION") or DEFAULT_REGION,
            table_name=env.get("TABLE_NAME") or DEFAULT_TABLE,
            idle_timeout_seconds=_env_int(env, "IDLE_TIMEOUT_SECONDS", DEFAULT_IDLE_TIMEOUT, 60, 7 * 86400),
            startup_grace_minutes=_env_int(env, "STARTUP_GRACE_MINUTES", DEFAULT_STARTUP_GRACE, 0, 1440),
            admin_role_id=(env.get("ADMIN_ROLE_ID") or "").strip(),
            public_key=(env.get("DISCORD_PUBLIC_KEY") or "").strip(),
            application_id=(env.get("DISCORD_APPLICATION_ID") or "").strip(),
            game_port=game_port,
            # The query listener defaults to the game port (server.properties query.port).
            query_port=_env_int(env, "QUERY_PORT", game_port, 1, 65535),
            probe_timeout=_env_float(env, "PROBE_TIMEOUT_SECONDS", DEFAULT_PROBE_TIMEOUT),
            stop_grace_seconds=_env_int(env, "STOP_GRACE_SECONDS", DEFAULT_STOP_GRACE, 0, 600),
            graceful_stop_command=(env.get("GRACEFUL_STOP_COMMAND") or "").strip(),
            log_level=env.get("LOG_LEVEL") or "INFO",
        )
