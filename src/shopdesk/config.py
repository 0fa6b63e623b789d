from pydantic_settings import BaseSettings


class Config(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str
    debug: bool = False
    counter_width: int = 4  # Zero-padding width of issued numbers
    counter_initial_value: int = 0  # Seed for new counters; first issued number is seed + 1
    counter_max_attempts: int = 3
    counter_retry_delay: float = 1.0  # Seconds between allocation attempts

    model_config = {
        "env_file": [".env"],
        "env_prefix": "SHOPDESK_",
        "extra": "ignore",
    }
