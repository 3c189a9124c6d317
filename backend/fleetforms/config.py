from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    MONGO_URI: str = "mongodb://localhost:27017"
    DB_NAME: str = "fleetforms"
    RECORDS_API_URL: str = "http://localhost:5000/api"
    REQUEST_TIMEOUT: float = 30.0
    DRAFT_QUIET_PERIOD: float = 1.0  # seconds without edits before a draft is written
    LOOKUP_QUIET_PERIOD: float = 0.5
    EXPIRY_WARNING_DAYS: int = 30
    MAX_UPLOAD_SIZE: int = 1073741824  # Default: 1GB in bytes
    UPLOAD_DIR: str = "_uploads"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


settings = Settings()
