"""
Application configuration
Read from environment variables or a local .env file
"""
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "PlayStation Rooms API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # JWT (In production, SECRET_KEY must come from the environment)
    SECRET_KEY: str = "your-secret-key-keep-it-secret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Reservations
    RESERVATION_EXPIRATION_MINUTES: int = 15
    ACCESS_CODE_MAX_ATTEMPTS: int = 10

    # Expiration sweep
    ENABLE_EXPIRATION_SWEEP: bool = True
    EXPIRATION_SWEEP_INTERVAL_SECONDS: int = 60

    model_config = ConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()
