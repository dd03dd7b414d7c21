import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


class Settings:
    mongo_uri: str = os.getenv("MONGO_URI", "mongodb://localhost:27017/hmpi")
    mongo_db: str = os.getenv("MONGO_DB", "hmpi")
    mongo_collection: str = os.getenv("MONGO_COLL", "Hmpi_Results")
    mongo_timeout_ms: int = int(os.getenv("MONGO_TIMEOUT_MS", "5000"))

    gemini_api_key: str = os.getenv("GEMINI_API_KEY", "")
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
    gemini_timeout_ms: int = int(os.getenv("GEMINI_TIMEOUT_MS", "30000"))

    host: str = os.getenv("FLASK_HOST", "0.0.0.0")
    port: int = int(os.getenv("FLASK_PORT") or os.getenv("PORT", "5000"))
    debug: bool = os.getenv("FLASK_DEBUG", "0") == "1"
    cors_origins: List[str] = _split(
        os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")
    )

    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    max_upload_mb: int = int(os.getenv("MAX_UPLOAD_MB", "10"))


settings = Settings()
