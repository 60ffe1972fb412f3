"""FastAPI dependencies: caller identity and service wiring."""
from datetime import datetime

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from barangay.config import settings
from barangay.database import get_db
from barangay.models.enums import ActorRole
from barangay.services.approval_queue import ApprovalQueueAggregator
from barangay.services.authorization import Actor, RolePolicy
from barangay.services.cases import BlotterWorkflowService, IncidentWorkflowService
from barangay.services.certificates import CertificateWorkflowService
from barangay.services.issuance import CertificateIssuanceEngine
from barangay.services.notifications import LoggingNotificationDispatcher

_default_policy = RolePolicy()
_default_notifier = LoggingNotificationDispatcher()


def get_actor(
    x_actor_id: str = Header(None),
    x_actor_role: str = Header(None)
) -> Actor:
    """
    Resolve the caller from headers set by the upstream identity provider.

    The headers are trusted; this layer only checks they are present and
    name a known role.
    """
    if not x_actor_id or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "code": "unauthenticated",
                "message": "X-Actor-Id and X-Actor-Role headers are required",
            },
        )
    try:
        role = ActorRole(x_actor_role.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": "unknown_role",
                "message": f"Unknown role {x_actor_role}",
                "details": {"role": x_actor_role},
            },
        )
    return Actor(actor_id=x_actor_id.strip(), role=role)


def get_policy() -> RolePolicy:
    return _default_policy


def get_notifier():
    return _default_notifier


def get_clock():
    return datetime.utcnow


def get_issuance_engine(
    db: Session = Depends(get_db),
    policy: RolePolicy = Depends(get_policy),
    notifier=Depends(get_notifier),
    clock=Depends(get_clock)
) -> CertificateIssuanceEngine:
    return CertificateIssuanceEngine(db, policy=policy, notifier=notifier, settings=settings, clock=clock)


def get_certificate_service(
    db: Session = Depends(get_db),
    issuance: CertificateIssuanceEngine = Depends(get_issuance_engine),
    policy: RolePolicy = Depends(get_policy),
    notifier=Depends(get_notifier),
    clock=Depends(get_clock)
) -> CertificateWorkflowService:
    return CertificateWorkflowService(db, issuance=issuance, policy=policy, notifier=notifier, clock=clock)


def get_blotter_service(
    db: Session = Depends(get_db),
    policy: RolePolicy = Depends(get_policy),
    notifier=Depends(get_notifier),
    clock=Depends(get_clock)
) -> BlotterWorkflowService:
    return BlotterWorkflowService(db, policy=policy, notifier=notifier, clock=clock)


def get_incident_service(
    db: Session = Depends(get_db),
    policy: RolePolicy = Depends(get_policy),
    notifier=Depends(get_notifier),
    clock=Depends(get_clock)
) -> IncidentWorkflowService:
    return IncidentWorkflowService(db, policy=policy, notifier=notifier, clock=clock)


def get_approval_queue(
    certificates: CertificateWorkflowService = Depends(get_certificate_service),
    blotters: BlotterWorkflowService = Depends(get_blotter_service),
    incidents: IncidentWorkflowService = Depends(get_incident_service)
) -> ApprovalQueueAggregator:
    return ApprovalQueueAggregator(certificates, blotters, incidents)
