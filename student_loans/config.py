"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class LoanServiceConfig(BaseSettings):
    """Student loans service configuration"""
    
    # Database configuration
    database_url: str = "sqlite:///student_loans.db"  # memory://, sqlite:///path, postgresql://...
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    cors_origins: List[str] = ["*"]
    
    # Security configuration
    jwt_secret: str = ""  # Required; LoanSystem refuses to start without it
    jwt_expiry_hours: int = 1
    jwt_algorithm: str = "HS256"
    password_min_length: int = 8
    bootstrap_admin_email: str = ""  # Empty = no admin created at startup
    bootstrap_admin_password: str = ""

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Business rules configuration
    amount_precision: int = 2
    
    # Feature flags
    enable_audit_logging: bool = True
    seed_loan_types: bool = True
    
    class Config:
        env_prefix = "STUDENT_LOANS_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LoanServiceConfig()


def get_config() -> LoanServiceConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LoanServiceConfig:
    """Reload configuration from environment"""
    global config
    config = LoanServiceConfig()
    return config
