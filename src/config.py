from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # Database
    PGHOST: str = "localhost"
    PGDATABASE: str = "ferry_access"
    PGUSER: str = "postgres"
    PGPASSWORD: str = "postgres"
    PGSSLMODE: str = "prefer"
    DATABASE_URL: Optional[str] = None
    
    # Security
    SECRET_KEY: str
    TICKET_SIGNING_SECRET: str
    ALGORITHM: str = "HS256"
    
    # Access control
    SCAN_REPLAY_WINDOW_SECONDS: int = 3
    ANTI_PASSBACK_WINDOW_SECONDS: int = 300
    DEPARTED_GRACE_MINUTES: int = 60
    OFFLINE_BATCH_MAX_SIZE: int = 500
    
    # Application
    PROJECT_NAME: str = "Ferry Access Control"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    
    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql://{self.PGUSER}:{self.PGPASSWORD}@{self.PGHOST}/{self.PGDATABASE}?sslmode={self.PGSSLMODE}"
    
    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
