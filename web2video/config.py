from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Web2Video"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # Retrieval tuning lives in a YAML file so operators can change retry
    # budgets and bypass tiers without touching the environment
    CONFIG_PATH: str = "config.yml"

    # CORS
    CORS_ENABLED: bool = True
    CORS_ORIGINS: List[str] = ["*"]

    # Logging
    LOG_FORMAT: str = "json"  # "json" for production, "text" for development
    LOG_LEVEL: str = "INFO"

    # Metrics
    METRICS_ENABLED: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
