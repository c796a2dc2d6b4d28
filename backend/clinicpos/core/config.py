from typing import List, Optional, Union
import logging

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

class Settings(BaseSettings):
    PROJECT_NAME: str = "Clinic POS"
    API_V1_STR: str = "/api"
    # Must be overridden through .env or the environment in production
    SECRET_KEY: str = Field(
        default="dev-only-secret-key-please-change-in-production",
        description="JWT signing key"
    )
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 4  # 4 hours
    JWT_ALGORITHM: str = "HS256"

    # CORS
    BACKEND_CORS_ORIGINS: List[Union[str, AnyHttpUrl]] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:3001",
        "http://127.0.0.1:3001"
    ]

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Database
    SQLITE_DATABASE_URI: str = "sqlite:///./clinic_pos.db"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    # Seeded on first start
    FIRST_SUPERUSER: str = "admin"
    FIRST_SUPERUSER_EMAIL: str = "admin@example.com"
    FIRST_SUPERUSER_PASSWORD: str = "change-me-now"

    # Business defaults
    DEFAULT_CURRENCY: str = "SGD"
    BUSINESS_TIMEZONE: str = "Asia/Singapore"

    # Invoices
    INVOICE_DIR: str = "invoices"
    COMPANY_NAME: str = "Clinic POS Pte Ltd"
    COMPANY_ADDRESS_LINES: List[str] = ["1 Example Road", "Singapore 000000"]
    COMPANY_PHONE: str = ""
    COMPANY_EMAIL: str = ""
    COMPANY_WEBSITE: str = ""
    PAYNOW_UEN: str = ""
    BANK_NAME: str = ""
    BANK_ACCOUNT_NAME: str = ""
    BANK_ACCOUNT_NUMBER: str = ""
    BANK_CODE: str = ""
    BANK_SWIFT: str = ""

    # Email (SMTP)
    EMAIL_ENABLED: bool = True
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: Optional[int] = None
    SMTP_SECURE: bool = False  # implicit TLS, usually port 465
    EMAIL_USER: Optional[str] = None
    EMAIL_PASS: Optional[str] = None
    EMAIL_FROM: Optional[str] = None

    # Daily membership discount expiry
    MEMBERSHIP_EXPIRY_ENABLED: bool = True
    MEMBERSHIP_EXPIRY_HOUR: int = 0  # 0-23
    MEMBERSHIP_EXPIRY_MINUTE: int = 15  # 0-59

    class Config:
        case_sensitive = True
        env_file = ".env"


settings = Settings()
logger.info(f"Loaded settings: API_V1_STR={settings.API_V1_STR}, CORS={settings.BACKEND_CORS_ORIGINS}")
