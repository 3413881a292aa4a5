from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    database_url: str = "sqlite:///./tradewatch.db"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "http://localhost:3000"

    # Correlation pair computation
    correlation_max_workers: int = 4
    request_deadline_seconds: float = 10.0

    # Periodic re-scoring of open alerts
    risk_refresh_enabled: bool = False
    risk_refresh_minutes: int = 30

    # SlowAPI default limit applied to every route
    rate_limit_default: str = "120/minute"

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",")]

    class Config:
        env_file = ".env"


settings = Settings()
