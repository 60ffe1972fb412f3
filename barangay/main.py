"""Main FastAPI application entry point."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from barangay.api.routes import router
from barangay.config import settings
from barangay.database import Base, engine
from barangay.errors import register_error_handlers
from barangay.logging_config import configure_logging
# Import models to register them with SQLAlchemy Base
from barangay.models.audit import AuditEvent  # noqa: F401
from barangay.models.domain import (  # noqa: F401
    BlotterCase,
    CertificateRequest,
    CertificateSequence,
    IncidentReport,
    IssuedCertificate,
)

configure_logging(settings.log_level)

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Barangay Approval & Certificate Issuance",
    description="Approval workflow for certificate requests, blotters and incident reports, "
                "with certificate numbering, validity and public verification.",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(router, prefix="/api", tags=["Barangay"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "Barangay Approval & Issuance"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
