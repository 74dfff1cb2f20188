from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    # Database
    DATABASE_URL: str
    AUTO_CREATE_TABLES: bool = False

    # JWT Authentication
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 10080  # 7 days

    # CORS
    CORS_ORIGINS: str = "*"  # In prod: "https://tusitio.com,https://www.tusitio.com"

    # Application
    PROJECT_NAME: str = "LedgerLens API"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    LOG_LEVEL: str = "INFO"

    # Gemini
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_TIMEOUT: float = 120.0

    # File storage ("local" or "supabase")
    STORAGE_BACKEND: str = "local"
    STORAGE_LOCAL_DIR: str = "/tmp/statements"
    STORAGE_BUCKET: str = "statements"
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    MAX_UPLOAD_MB: int = 10

    # Receipt ingestion
    INGEST_API_KEY: str = ""
    RECEIPT_MATCH_WINDOW_DAYS: int = 3
    DEFAULT_CURRENCY: str = "IDR"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


# Create a single instance to use across the app
settings = Settings()
