from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # Local cache database (one file per signed-in device)
    LOCAL_DB_URL: str = "sqlite:///./skids-offline.db"

    # Server API
    API_BASE_URL: str = "http://localhost:3000/api"
    API_TIMEOUT_SECONDS: float = 10.0

    # Sync policy
    SYNC_INTERVAL_SECONDS: int = 300  # 5 minutes
    SYNC_MAX_RETRIES: int = 3
    FRESHNESS_MAX_AGE_HOURS: float = 6
    ENABLE_OFFLINE_MODE: bool = True
    TRACKED_COLLECTIONS: List[str] = ["children", "appointments", "reports", "campaigns", "messages"]

    # Connectivity probe (GET /health against the server API)
    CONNECTIVITY_PROBE_ENABLED: bool = False
    CONNECTIVITY_PROBE_SECONDS: int = 30

    # URLs
    FRONTEND_URL: str = "http://localhost:3000"

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"  # Allow extra fields in .env file

settings = Settings()
