from typing import Optional, List
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings with environment-based configuration"""

    # Application
    app_name: str = "City Alerts Backend"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"

    # API
    api_v1_prefix: str = "/api/v1"
    secret_key: str = "your-secret-key-change-in-production"
    access_token_expire_minutes: int = 30

    # Database
    database_url: Optional[str] = None

    # SQLite for development
    sqlite_db_name: str = "city_alerts.db"

    # PostgreSQL for production
    postgres_server: Optional[str] = None
    postgres_user: Optional[str] = None
    postgres_password: Optional[str] = None
    postgres_db: Optional[str] = None
    postgres_port: int = 5432

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_connect_timeout: float = 1.0

    # Celery
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"

    # Email (SMTP)
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from: str = "Smart City <noreply@smartcity.gov>"
    smtp_use_tls: bool = True
    smtp_timeout: int = 10

    # SMS (Twilio)
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None

    # Links in outgoing notifications
    frontend_url: str = "http://localhost:3000"

    # Alert lifecycle
    max_escalation_level: int = 5
    notify_on_severity_upgrade: bool = True
    expiry_sweep_interval_seconds: float = 300.0
    statistics_cache_ttl: int = 60

    # CORS - Comma-separated string from env, converted to list
    backend_cors_origins_str: str = "http://localhost:3000,http://localhost:8000,http://localhost:5173"

    # Logging
    log_level: str = "INFO"

    @property
    def backend_cors_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        if self.backend_cors_origins_str:
            return [origin.strip() for origin in self.backend_cors_origins_str.split(",") if origin.strip()]
        return []

    @property
    def database_url_complete(self) -> str:
        """Get complete database URL based on environment"""
        if self.database_url:
            return self.database_url

        if self.environment == "production" and all(
            [
                self.postgres_server,
                self.postgres_user,
                self.postgres_password,
                self.postgres_db,
            ]
        ):
            return f"postgresql://{self.postgres_user}:{self.postgres_password}@{self.postgres_server}:{self.postgres_port}/{self.postgres_db}"

        # Default to SQLite for development
        return f"sqlite:///./{self.sqlite_db_name}"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_parse_none_str="None"
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
