"""
Configuration management using environment variables.
Handles document store and logging settings with validation and defaults.
"""

from typing import Optional
from urllib.parse import urlparse
from pydantic import Field, validator
from pydantic_settings import BaseSettings
from pathlib import Path


DEFAULT_DATABASE = "bookStoreDB"


class StoreConfig(BaseSettings):
    """
    Configuration class for the book store backend.
    Uses pydantic BaseSettings for environment variable management.
    """

    # MongoDB Configuration
    mongo_uri: str = Field(default="mongodb://localhost:27017/bookStoreDB", env="MONGO_URI")
    mongo_database: Optional[str] = Field(default=None, env="MONGO_DATABASE")
    mongo_collection: str = Field(default="books", env="MONGO_COLLECTION")

    # Logging Configuration
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")

    # Development/Testing
    debug: bool = Field(default=False, env="DEBUG")

    @validator('mongo_uri')
    def validate_mongo_uri(cls, v):
        """Ensure the connection string targets MongoDB."""
        if not v.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError('mongo_uri must start with mongodb:// or mongodb+srv://')
        return v

    @validator('log_level')
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of: {valid_levels}')
        return v.upper()

    @validator('log_format')
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ['json', 'console']
        if v.lower() not in valid_formats:
            raise ValueError(f'log_format must be one of: {valid_formats}')
        return v.lower()

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Ignore extra fields from .env

    def get_database_name(self) -> str:
        """
        Resolve the database name.

        An explicit MONGO_DATABASE wins, then the database named in the
        connection string path, then the default.
        """
        if self.mongo_database:
            return self.mongo_database
        path = urlparse(self.mongo_uri).path.lstrip("/")
        return path or DEFAULT_DATABASE

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path as Path object."""
        if self.log_file:
            return Path(self.log_file)
        return None

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug


# Global configuration instance
config = StoreConfig()
