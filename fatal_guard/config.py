"""
Error handler configuration management.
"""

from pydantic_settings import BaseSettings

from fatal_guard.exceptions import ErrorCode


class Settings(BaseSettings):
    """Error handler settings loaded from environment variables."""
    
    # Fatal log file
    log_root: str = "."
    log_file_name: str = "fatal_log.txt"
    
    # Memory kept in reserve so the shutdown path can still run after an out-of-memory
    memory_reserve_size: int = 262144
    
    # Runtime conditions that reach the error hook at all
    error_reporting: int = int(ErrorCode.ALL)
    
    # Operational logging
    log_level: str = "INFO"
    
    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
