import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass
class Settings:
    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./library.db")
    database_echo: bool = os.getenv("DATABASE_ECHO", "False").lower() in ("true", "1", "yes")

    # Security (token signing for the auth provider)
    secret_key: str = os.getenv("SECRET_KEY", "supersecretkey")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    access_token_expire_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

    # Circulation rules
    default_loan_days: int = int(os.getenv("DEFAULT_LOAN_DAYS", "14"))
    min_loan_days: int = int(os.getenv("MIN_LOAN_DAYS", "1"))
    max_loan_days: int = int(os.getenv("MAX_LOAN_DAYS", "30"))

    # Directory rules
    min_class_level: int = int(os.getenv("MIN_CLASS_LEVEL", "1"))
    max_class_level: int = int(os.getenv("MAX_CLASS_LEVEL", "10"))

    # Google Books lookup
    google_books_url: str = os.getenv("GOOGLE_BOOKS_URL", "https://www.googleapis.com/books/v1/volumes")
    google_books_timeout: float = float(os.getenv("GOOGLE_BOOKS_TIMEOUT", "5"))
    google_books_api_key: Optional[str] = os.getenv("GOOGLE_BOOKS_API_KEY")

    # App
    app_name: str = os.getenv("APP_NAME", "School Library")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    cors_origins: List[str] = field(default_factory=lambda: _env_list("CORS_ORIGINS", "*"))


settings = Settings()
