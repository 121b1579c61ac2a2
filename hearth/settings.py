from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 8787
    CORS_ORIGINS: List[str] = ["*"]

    # realtime
    POLL_INTERVAL_SECONDS: float = 15
    FETCH_TIMEOUT_SECONDS: float = 10
    HEARTBEAT_INTERVAL_SECONDS: float = 30
    HEARTBEAT_TIMEOUT_SECONDS: float = 90
    OUTBOUND_QUEUE_SIZE: int = 100
    WS_PING_INTERVAL: float = 20

    # sessions
    SESSION_EXPIRY_SECONDS: float = 24 * 60 * 60
    SESSION_SWEEP_INTERVAL_SECONDS: float = 60 * 60

    # per-client request limits on the REST surface
    RATE_LIMIT_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: float = 60
    # routes that check a credential against an upstream service
    SESSION_RATE_LIMIT_REQUESTS: int = 10

    # persistence
    CREDENTIALS_PATH: str = "./data/bridge-credentials.json"

    # upstream services
    UPSTREAM_REQUEST_TIMEOUT: float = 10
    # budget for each secondary service inside one snapshot fetch
    SERVICE_TIMEOUT_SECONDS: float = 5
    HIVE_API_URL: str = "https://beekeeper-uk.hivehome.com/1.0"
