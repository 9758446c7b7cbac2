import os
import tempfile
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Database settings
    # LIBRARY_DB_FILE wins; otherwise a per-process temp file
    database_file: str = (
        os.getenv("LIBRARY_DB_FILE")
        or os.path.join(tempfile.gettempdir(), f"library_{os.getpid()}.db")
    )

    # Lending rules
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "14"))
    default_fine_per_day: float = float(os.getenv("DEFAULT_FINE_PER_DAY", "10.0"))
    basic_borrow_limit: int = int(os.getenv("BASIC_BORROW_LIMIT", "2"))
    premium_borrow_limit: int = int(os.getenv("PREMIUM_BORROW_LIMIT", "5"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Lending Service")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Pagination settings
    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
    max_page_size: int = int(os.getenv("MAX_PAGE_SIZE", "100"))


settings = Settings()
