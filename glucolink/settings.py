import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # LibreLinkUp account
    username: str = Field(default="", alias="LIBRE_USERNAME")
    password: str = Field(default="", alias="LIBRE_PASSWORD")
    glucose_unit: str = Field(default="mmol", alias="GLUCOSE_UNIT")  # mmol | mgdl

    # Upstream API
    api_base: str = Field(default="https://api.libreview.io", alias="LIBRE_API_BASE")
    product: str = Field(default="llu.android", alias="LIBRE_PRODUCT")
    version: str = Field(default="4.7.0", alias="LIBRE_VERSION")
    login_timeout: float = Field(default=10.0, alias="LOGIN_TIMEOUT")
    request_timeout: float = Field(default=30.0, alias="REQUEST_TIMEOUT")
    graph_days: int = Field(default=1, alias="GRAPH_DAYS")

    # Authentication
    token_ttl_minutes: float = Field(default=50, alias="TOKEN_TTL_MINUTES")

    # Throttling
    min_request_interval: float = Field(default=30.0, alias="MIN_REQUEST_INTERVAL")
    initial_backoff: float = Field(default=1.0, alias="INITIAL_BACKOFF")
    max_backoff: float = Field(default=900.0, alias="MAX_BACKOFF")
    failure_threshold: int = Field(default=3, alias="FAILURE_THRESHOLD")
    failure_penalty: float = Field(default=5.0, alias="FAILURE_PENALTY")

    # Cache
    cache_dir: str = Field(default="~/.cache/glucolink", alias="CACHE_DIR")
    cache_fresh_minutes: float = Field(default=4, alias="CACHE_FRESH_MINUTES")
    refresh_ahead_seconds: float = Field(default=60.0, alias="REFRESH_AHEAD_SECONDS")
    error_grace_multiplier: float = Field(default=3.0, alias="ERROR_GRACE_MULTIPLIER")
    rate_limit_grace_multiplier: float = Field(
        default=2.0, alias="RATE_LIMIT_GRACE_MULTIPLIER"
    )
    max_rate_limit_retries: int | None = Field(
        default=None, alias="MAX_RATE_LIMIT_RETRIES"
    )

    # Polling
    poll_interval_minutes: float = Field(default=5, alias="POLL_INTERVAL_MINUTES")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


global_settings = Settings.model_validate(dict(os.environ))
