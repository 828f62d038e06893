"""
API configuration settings.
"""

from pydantic import Field, validator
from pydantic_settings import BaseSettings


class APIConfig(BaseSettings):
    """API configuration settings."""

    # API Settings
    api_title: str = "Book Store API"
    api_version: str = "1.0.0"
    api_description: str = "A JSON REST API for managing the books of a store"

    # Server Settings
    host: str = "0.0.0.0"
    port: int = Field(default=5000, env="PORT")
    debug: bool = False

    # CORS Settings
    cors_origins: list = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list = ["*"]
    cors_allow_headers: list = ["*"]

    @validator('port')
    def validate_port(cls, v):
        """Ensure the listening port is a valid TCP port."""
        if v < 1 or v > 65535:
            raise ValueError('port must be between 1 and 65535')
        return v

    model_config = {
        "env_file": ".env",
        "extra": "ignore"  # Ignore extra fields from .env
    }


# Global config instance
config = APIConfig()
