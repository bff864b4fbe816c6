from pydantic_settings import BaseSettings
import secrets

class Settings(BaseSettings):
    # Server
    PORT: int = 8080

    # Database
    DATABASE_URL: str

    # Security
    SECRET_KEY: str = secrets.token_urlsafe(32)
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Logging
    LOG_LEVEL: str = "INFO"

    # Frontend
    FRONTEND_URL: str = "http://localhost:3000"

    # Environment
    ENVIRONMENT: str = "development"

    # Expiry scheduler
    EXPIRY_SWEEP_INTERVAL_SECONDS: float = 60.0
    EXPIRY_SHUTDOWN_GRACE_SECONDS: float = 5.0

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

settings = Settings()
