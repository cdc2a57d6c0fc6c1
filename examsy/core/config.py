from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import validator
from typing import List, Optional


class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "Examsy Sync"
    DEBUG: bool = False
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # CORS settings for the local UI
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Remote store settings
    STORE_BACKEND: str = "firestore"
    FIREBASE_CREDENTIALS_PATH: str = ""
    FIREBASE_PROJECT_ID: Optional[str] = None
    STUDENTS_COLLECTION: str = "students"
    SESSIONS_COLLECTION: str = "sessions"
    ROOMS_COLLECTION: str = "rooms"
    FIRESTORE_BATCH_LIMIT: int = 500

    # Local session credential
    CREDENTIAL_STORE_PATH: str = ".examsy/local_storage.json"
    CREDENTIAL_STORAGE_KEY: str = "examsy_auth"

    # Student defaults applied on import
    DEFAULT_STUDENT_PASSWORD: str = "password123"
    DEFAULT_STUDENT_CLASS: str = "7"

    # Client-side admin credential pair
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str = "admin123"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    @validator("ALLOWED_ORIGINS", pre=True)
    def parse_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @validator("STORE_BACKEND")
    def validate_store_backend(cls, v):
        v = v.strip().lower()
        if v not in ("firestore", "memory"):
            raise ValueError("STORE_BACKEND must be 'firestore' or 'memory'")
        return v


settings = Settings()
