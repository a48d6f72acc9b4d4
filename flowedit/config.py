"""
Configuration settings for the Flow Editor service.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    APP_NAME: str = "FlowEdit"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Minimap
    MINIMAP_WIDTH: float = 220.0
    MINIMAP_HEIGHT: float = 160.0
    MINIMAP_PADDING: float = 20.0

    # Session opened at startup
    DEMO_SESSION_ID: str = "demo"

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
