from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_PROJECT_ROOT = Path(__file__).resolve().parents[3]
_ENV_PATH = _PROJECT_ROOT / '.env'
_ENV_FILE = _ENV_PATH if _ENV_PATH.exists() else (_PROJECT_ROOT / '.env.example')


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_ignore_empty=True,
        extra='ignore',
    )

    PROJECT_NAME: str = 'Channel Fanout'
    VERSION: str = '0.1.0'
    DEBUG: bool = False  # Debug-level IO logs + file sink

    # Redis Configuration (broker + room membership store)
    REDIS_HOST: str = '127.0.0.1'
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ''
    REDIS_DECODE_RESPONSES: bool = True

    # Redis Connection Configuration
    REDIS_SOCKET_TIMEOUT: int = 10  # Command connection read/write timeout (seconds)
    REDIS_SOCKET_CONNECT_TIMEOUT: int = 10  # Connection timeout (seconds)
    REDIS_SOCKET_KEEPALIVE: bool = True  # Enable TCP keepalive
    REDIS_HEALTH_CHECK_INTERVAL: int = 30  # Health check interval (seconds)

    # Room keys are namespaced with this prefix (parallel test isolation)
    REDIS_KEY_PREFIX: str = ''

    # Pub/Sub read loop
    PUBSUB_POLL_TIMEOUT: float = 1.0  # Max wait per get_message() call (seconds)
    PUBSUB_RECONNECT_DELAY: float = 1.0  # Back-off after a read error (seconds)

    # Logging
    LOG_TIMEZONE: str = 'UTC'

    @field_validator('PUBSUB_POLL_TIMEOUT', 'PUBSUB_RECONNECT_DELAY')
    @classmethod
    def positive_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError('interval must be positive')
        return v


settings = Settings()  # type: ignore
