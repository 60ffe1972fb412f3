"""Runtime settings read from the environment (and an optional .env file)."""
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from barangay.models.enums import CertificateType

load_dotenv()

DEFAULT_VALIDITY_DAYS = int(os.getenv("CERTIFICATE_VALIDITY_DAYS", "180"))


def _resolve_database_url() -> str:
    database_url = os.getenv("DATABASE_URL", "sqlite:///./barangay.db")
    # Render/Heroku hand out postgres:// but SQLAlchemy needs postgresql://
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def _resolve_validity_days() -> dict:
    return {
        certificate_type.value: int(
            os.getenv(
                f"CERTIFICATE_VALIDITY_DAYS_{certificate_type.value.upper()}",
                str(DEFAULT_VALIDITY_DAYS),
            )
        )
        for certificate_type in CertificateType
    }


@dataclass(frozen=True)
class Settings:
    database_url: str = _resolve_database_url()
    db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
    db_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))

    # Certificate issuance policy
    certificate_validity_days: dict = field(default_factory=_resolve_validity_days)
    certificate_validity_default_days: int = DEFAULT_VALIDITY_DAYS
    certificate_expiring_soon_days: int = int(
        os.getenv("CERTIFICATE_EXPIRING_SOON_DAYS", "30")
    )
    certificate_signed_by: str | None = os.getenv("CERTIFICATE_SIGNED_BY") or None
    certificate_signature_position: str = os.getenv(
        "CERTIFICATE_SIGNATURE_POSITION", "Punong Barangay"
    )

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    cors_allow_origins: str = os.getenv("CORS_ALLOW_ORIGINS", "*")

    def validity_days_for(self, certificate_type: str) -> int:
        certificate_type = getattr(certificate_type, "value", certificate_type)
        return self.certificate_validity_days.get(certificate_type, self.certificate_validity_default_days)


settings = Settings()
