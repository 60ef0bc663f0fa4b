"""
MODULE OVERVIEW:
This module provides application-wide configuration using Pydantic Settings.

WHAT IS HAPPENING HERE:
`Settings` reads the raw environment (variables prefixed with `VAR_`, plus the
nearest `.env` file). It is only read once, at startup, and immediately turned
into a `GatewayConfig`: a frozen value that the dispatcher, the realtime
gateway and the identity validator receive through their constructors.
Nothing deeper in the code reads the environment.

A missing origin or signing secret raises `ConfigError` here, before a single
socket is opened.
"""
from pathlib import Path

from pydantic import BaseModel, ConfigDict, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from roomgate.shared.errors import ConfigError

ENV_FILE_NAME = ".env"
ENV_SEARCH_DEPTH = 9


def find_env_file(start: Path | None = None, max_depth: int = ENV_SEARCH_DEPTH) -> Path | None:
    """Walk up from `start` (default: cwd) and return the first `.env` found."""
    current = (start or Path.cwd()).resolve()
    for _ in range(max_depth):
        candidate = current / ENV_FILE_NAME
        if candidate.is_file():
            return candidate
        if current.parent == current:
            break
        current = current.parent
    return None


class GatewayConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    origin: str
    secret: SecretStr
    cookie_name: str = "token"
    debug: bool = False

    # HTTP
    max_body_size: int = 5 * 1024
    body_timeout_s: float = 10.0
    handler_timeout_s: float = 30.0
    slow_request_ms: float = 1000.0

    # Tokens
    token_algorithms: tuple[str, ...] = ("HS256",)
    token_leeway_s: float = 0.0

    # Realtime
    realtime_path: str = "/connections"
    default_room: str = "public"
    extra_origins: frozenset[str] = frozenset()

    @property
    def allowed_origins(self) -> frozenset[str]:
        return frozenset({self.origin}) | self.extra_origins

    @property
    def cors_headers(self) -> dict[str, str]:
        return {
            "access-control-allow-credentials": "true",
            "access-control-allow-origin": self.origin,
        }


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="VAR_",
        env_file_encoding="utf-8",
        # Tolerate unrelated keys in a shared .env
        extra="ignore",
    )

    ORIGIN: str | None = None
    COOKIE_NAME: str = "token"
    TOKEN: SecretStr | None = None
    DEBUG: bool = False

    HOST: str = "127.0.0.1"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    MAX_BODY_SIZE: int = 5 * 1024
    BODY_TIMEOUT_S: float = 10.0
    HANDLER_TIMEOUT_S: float = 30.0
    SLOW_REQUEST_MS: float = 1000.0
    TOKEN_LEEWAY_S: float = 0.0

    REALTIME_PATH: str = "/connections"
    DEFAULT_ROOM: str = "public"
    # Comma separated list of additional origins allowed to open realtime connections
    EXTRA_ORIGINS: str = ""

    def to_config(self) -> GatewayConfig:
        if not self.ORIGIN:
            raise ConfigError("VAR_ORIGIN is missing")
        if self.TOKEN is None or not self.TOKEN.get_secret_value():
            raise ConfigError("VAR_TOKEN is missing")
        extra = frozenset(o.strip() for o in self.EXTRA_ORIGINS.split(",") if o.strip())
        return GatewayConfig(
            origin=self.ORIGIN,
            secret=self.TOKEN,
            cookie_name=self.COOKIE_NAME,
            debug=self.DEBUG,
            max_body_size=self.MAX_BODY_SIZE,
            body_timeout_s=self.BODY_TIMEOUT_S,
            handler_timeout_s=self.HANDLER_TIMEOUT_S,
            slow_request_ms=self.SLOW_REQUEST_MS,
            token_leeway_s=self.TOKEN_LEEWAY_S,
            realtime_path=self.REALTIME_PATH,
            default_room=self.DEFAULT_ROOM,
            extra_origins=extra,
        )


def load_settings(env_file: Path | None = None) -> Settings:
    """Read settings from the environment and the nearest `.env` file."""
    return Settings(_env_file=env_file or find_env_file())
