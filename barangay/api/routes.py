"""API routes for the approval and issuance workflow."""
from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from barangay.api.deps import (
    get_actor,
    get_approval_queue,
    get_blotter_service,
    get_certificate_service,
    get_incident_service,
    get_issuance_engine,
    get_policy,
)
from barangay.api.schemas import (
    ApprovalQueueResponse,
    ApproveRequest,
    BlotterCreate,
    BlotterResponse,
    CertificateRequestCreate,
    CertificateRequestResponse,
    CertificateRequestUpdate,
    CertificateStatistics,
    ErrorResponse,
    IncidentCreate,
    IncidentResponse,
    InvalidateRequest,
    IssuanceStatistics,
    IssuedCertificateResponse,
    ProgressRequest,
    QueueStatistics,
    RejectRequest,
    ReleaseRequest,
    VerificationResponse,
)
from barangay.models.enums import (
    ApprovalState,
    BlotterProgress,
    CertificateStatus,
    CertificateType,
    IncidentProgress,
)
from barangay.services.approval_queue import ApprovalQueueAggregator
from barangay.services.authorization import Actor, Operation, RolePolicy
from barangay.services.cases import BlotterWorkflowService, IncidentWorkflowService
from barangay.services.certificates import CertificateWorkflowService
from barangay.services.issuance import CertificateIssuanceEngine

router = APIRouter()

# Refusals every mutating route can answer with
REFUSALS = {
    403: {"model": ErrorResponse, "description": "Role may not perform this operation"},
    404: {"model": ErrorResponse, "description": "Record not found"},
    409: {"model": ErrorResponse, "description": "Illegal transition, stale state or duplicate allocation"},
    422: {"model": ErrorResponse, "description": "Validation error"},
}


# Certificate request endpoints
@router.post(
    "/certificate-requests",
    response_model=CertificateRequestResponse,
    status_code=status.HTTP_201_CREATED,
    responses=REFUSALS,
)
def submit_certificate_request(
    data: CertificateRequestCreate,
    actor: Actor = Depends(get_actor),
    service: CertificateWorkflowService = Depends(get_certificate_service)
):
    """Submit a certificate request; it starts pending."""
    return service.submit(
        actor,
        resident_ref=data.resident_ref,
        certificate_type=data.certificate_type,
        purpose=data.purpose,
        additional_requirements=data.additional_requirements,
    )


@router.get(
    "/certificate-requests",
    response_model=List[CertificateRequestResponse],
    dependencies=[Depends(get_actor)],
)
def list_certificate_requests(
    approval_state: Optional[ApprovalState] = None,
    certificate_type: Optional[CertificateType] = None,
    resident_ref: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: CertificateWorkflowService = Depends(get_certificate_service)
):
    return service.list_requests(
        approval_state=approval_state,
        certificate_type=certificate_type,
        resident_ref=resident_ref,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/certificate-requests/statistics",
    response_model=CertificateStatistics,
    dependencies=[Depends(get_actor)],
)
def certificate_request_statistics(service: CertificateWorkflowService = Depends(get_certificate_service)):
    return service.statistics()


@router.get(
    "/certificate-requests/{request_id}",
    response_model=CertificateRequestResponse,
    dependencies=[Depends(get_actor)],
    responses={404: REFUSALS[404]},
)
def get_certificate_request(request_id: int, service: CertificateWorkflowService = Depends(get_certificate_service)):
    return service.get(request_id)


@router.put("/certificate-requests/{request_id}", response_model=CertificateRequestResponse, responses=REFUSALS)
def update_certificate_request(
    request_id: int,
    data: CertificateRequestUpdate,
    actor: Actor = Depends(get_actor),
    service: CertificateWorkflowService = Depends(get_certificate_service)
):
    """Edit purpose or requirements while the request is pending."""
    return service.update_details(
        request_id,
        actor,
        purpose=data.purpose,
        additional_requirements=data.additional_requirements,
    )


@router.post("/certificate-requests/{request_id}/approve", response_model=CertificateRequestResponse, responses=REFUSALS)
def approve_certificate_request(
    request_id: int,
    data: Optional[ApproveRequest] = None,
    actor: Actor = Depends(get_actor),
    service: CertificateWorkflowService = Depends(get_certificate_service)
):
    data = data or ApproveRequest()
    return service.approve(request_id, actor, remarks=data.remarks, expected_state=data.expected_state)


@router.post("/certificate-requests/{request_id}/reject", response_model=CertificateRequestResponse, responses=REFUSALS)
def reject_certificate_request(
    request_id: int,
    data: RejectRequest,
    actor: Actor = Depends(get_actor),
    service: CertificateWorkflowService = Depends(get_certificate_service)
):
    """Remarks are mandatory; an empty string is refused with a validation error."""
    return service.reject(request_id, actor, remarks=data.remarks, expected_state=data.expected_state)


@router.post(
    "/certificate-requests/{request_id}/release",
    response_model=IssuedCertificateResponse,
    status_code=status.HTTP_201_CREATED,
    responses=REFUSALS,
)
def release_certificate_request(
    request_id: int,
    data: Optional[ReleaseRequest] = None,
    actor: Actor = Depends(get_actor),
    service: CertificateWorkflowService = Depends(get_certificate_service)
):
    """
    Release an approved request and issue its certificate in one step.

    A number collision answers 409 duplicate_allocation and leaves the request
    approved; retry with regenerate_number=true to skip taken numbers.
    """
    data = data or ReleaseRequest()
    return service.release(
        request_id,
        actor,
        remarks=data.remarks,
        regenerate_number=data.regenerate_number,
        expected_state=data.expected_state,
    )


# Issued certificate endpoints
@router.get(
    "/issued-certificates",
    response_model=List[IssuedCertificateResponse],
    dependencies=[Depends(get_actor)],
)
def list_issued_certificates(
    certificate_status: Optional[CertificateStatus] = Query(None, alias="status"),
    certificate_type: Optional[CertificateType] = None,
    resident_ref: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    engine: CertificateIssuanceEngine = Depends(get_issuance_engine)
):
    return engine.list_certificates(
        status=certificate_status,
        certificate_type=certificate_type,
        resident_ref=resident_ref,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/issued-certificates/statistics",
    response_model=IssuanceStatistics,
    dependencies=[Depends(get_actor)],
)
def issued_certificate_statistics(engine: CertificateIssuanceEngine = Depends(get_issuance_engine)):
    return engine.statistics()


@router.get("/issued-certificates/verify/{certificate_number}", response_model=VerificationResponse)
def verify_certificate(certificate_number: str, engine: CertificateIssuanceEngine = Depends(get_issuance_engine)):
    """
    Public verification by certificate number. No caller identity needed.

    Unknown numbers always get the same not-found answer with HTTP 200.
    """
    return engine.verify(certificate_number)


@router.get(
    "/issued-certificates/{certificate_id}",
    response_model=IssuedCertificateResponse,
    dependencies=[Depends(get_actor)],
    responses={404: REFUSALS[404]},
)
def get_issued_certificate(certificate_id: int, engine: CertificateIssuanceEngine = Depends(get_issuance_engine)):
    return engine.get(certificate_id)


@router.post(
    "/issued-certificates/{certificate_id}/invalidate",
    response_model=IssuedCertificateResponse,
    responses=REFUSALS,
)
def invalidate_certificate(
    certificate_id: int,
    data: InvalidateRequest,
    actor: Actor = Depends(get_actor),
    engine: CertificateIssuanceEngine = Depends(get_issuance_engine)
):
    """One-way revocation. A second call answers 409 already_invalid."""
    return engine.invalidate(certificate_id, actor, data.reason)


# Blotter endpoints
@router.post("/blotters", response_model=BlotterResponse, status_code=status.HTTP_201_CREATED, responses=REFUSALS)
def submit_blotter(
    data: BlotterCreate,
    actor: Actor = Depends(get_actor),
    service: BlotterWorkflowService = Depends(get_blotter_service)
):
    return service.submit(actor, data.model_dump())


@router.get("/blotters", response_model=List[BlotterResponse], dependencies=[Depends(get_actor)])
def list_blotters(
    approval_state: Optional[ApprovalState] = None,
    progress: Optional[BlotterProgress] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: BlotterWorkflowService = Depends(get_blotter_service)
):
    return service.list_cases(approval_state=approval_state, progress=progress, limit=limit, offset=offset)


@router.get("/blotters/statistics", response_model=Dict[str, int], dependencies=[Depends(get_actor)])
def blotter_statistics(service: BlotterWorkflowService = Depends(get_blotter_service)):
    return service.statistics()


@router.get(
    "/blotters/{blotter_id}",
    response_model=BlotterResponse,
    dependencies=[Depends(get_actor)],
    responses={404: REFUSALS[404]},
)
def get_blotter(blotter_id: int, service: BlotterWorkflowService = Depends(get_blotter_service)):
    return service.get(blotter_id)


@router.put("/blotters/{blotter_id}", response_model=BlotterResponse, responses=REFUSALS)
def update_blotter(
    blotter_id: int,
    data: BlotterCreate,
    actor: Actor = Depends(get_actor),
    service: BlotterWorkflowService = Depends(get_blotter_service)
):
    """Replace the details of a pending blotter. The case number is kept."""
    return service.update_details(blotter_id, actor, data.model_dump())


@router.post("/blotters/{blotter_id}/approve", response_model=BlotterResponse, responses=REFUSALS)
def approve_blotter(
    blotter_id: int,
    data: Optional[ApproveRequest] = None,
    actor: Actor = Depends(get_actor),
    service: BlotterWorkflowService = Depends(get_blotter_service)
):
    """Approval opens the case (progress Open)."""
    data = data or ApproveRequest()
    return service.approve(blotter_id, actor, remarks=data.remarks, expected_state=data.expected_state)


@router.post("/blotters/{blotter_id}/reject", response_model=BlotterResponse, responses=REFUSALS)
def reject_blotter(
    blotter_id: int,
    data: RejectRequest,
    actor: Actor = Depends(get_actor),
    service: BlotterWorkflowService = Depends(get_blotter_service)
):
    return service.reject(blotter_id, actor, remarks=data.remarks, expected_state=data.expected_state)


@router.post("/blotters/{blotter_id}/progress", response_model=BlotterResponse, responses=REFUSALS)
def advance_blotter_progress(
    blotter_id: int,
    data: ProgressRequest,
    actor: Actor = Depends(get_actor),
    service: BlotterWorkflowService = Depends(get_blotter_service)
):
    return service.advance_progress(
        blotter_id,
        actor,
        data.next_progress,
        resolution=data.resolution,
        expected_progress=data.expected_progress,
    )


# Incident endpoints
@router.post("/incidents", response_model=IncidentResponse, status_code=status.HTTP_201_CREATED, responses=REFUSALS)
def submit_incident(
    data: IncidentCreate,
    actor: Actor = Depends(get_actor),
    service: IncidentWorkflowService = Depends(get_incident_service)
):
    return service.submit(actor, data.model_dump())


@router.get("/incidents", response_model=List[IncidentResponse], dependencies=[Depends(get_actor)])
def list_incidents(
    approval_state: Optional[ApprovalState] = None,
    progress: Optional[IncidentProgress] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: IncidentWorkflowService = Depends(get_incident_service)
):
    return service.list_cases(approval_state=approval_state, progress=progress, limit=limit, offset=offset)


@router.get("/incidents/statistics", response_model=Dict[str, int], dependencies=[Depends(get_actor)])
def incident_statistics(service: IncidentWorkflowService = Depends(get_incident_service)):
    return service.statistics()


@router.get(
    "/incidents/{incident_id}",
    response_model=IncidentResponse,
    dependencies=[Depends(get_actor)],
    responses={404: REFUSALS[404]},
)
def get_incident(incident_id: int, service: IncidentWorkflowService = Depends(get_incident_service)):
    return service.get(incident_id)


@router.put("/incidents/{incident_id}", response_model=IncidentResponse, responses=REFUSALS)
def update_incident(
    incident_id: int,
    data: IncidentCreate,
    actor: Actor = Depends(get_actor),
    service: IncidentWorkflowService = Depends(get_incident_service)
):
    return service.update_details(incident_id, actor, data.model_dump())


@router.post("/incidents/{incident_id}/approve", response_model=IncidentResponse, responses=REFUSALS)
def approve_incident(
    incident_id: int,
    data: Optional[ApproveRequest] = None,
    actor: Actor = Depends(get_actor),
    service: IncidentWorkflowService = Depends(get_incident_service)
):
    """Approval records the incident (progress Recorded)."""
    data = data or ApproveRequest()
    return service.approve(incident_id, actor, remarks=data.remarks, expected_state=data.expected_state)


@router.post("/incidents/{incident_id}/reject", response_model=IncidentResponse, responses=REFUSALS)
def reject_incident(
    incident_id: int,
    data: RejectRequest,
    actor: Actor = Depends(get_actor),
    service: IncidentWorkflowService = Depends(get_incident_service)
):
    return service.reject(incident_id, actor, remarks=data.remarks, expected_state=data.expected_state)


@router.post("/incidents/{incident_id}/progress", response_model=IncidentResponse, responses=REFUSALS)
def advance_incident_progress(
    incident_id: int,
    data: ProgressRequest,
    actor: Actor = Depends(get_actor),
    service: IncidentWorkflowService = Depends(get_incident_service)
):
    return service.advance_progress(
        incident_id,
        actor,
        data.next_progress,
        resolution=data.resolution,
        expected_progress=data.expected_progress,
    )


# Approval queue endpoints
@router.get("/approval-queue", response_model=ApprovalQueueResponse, responses={403: REFUSALS[403]})
def list_approval_queue(
    type: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    policy: RolePolicy = Depends(get_policy),
    queue: ApprovalQueueAggregator = Depends(get_approval_queue)
):
    """Everything awaiting a decision, newest first. Filter with ?type=certificate|blotter|incident."""
    policy.require(actor, Operation.VIEW_QUEUE)
    return queue.list_pending(type_filter=type)


@router.get("/approval-queue/count", response_model=QueueStatistics, responses={403: REFUSALS[403]})
def approval_queue_count(
    actor: Actor = Depends(get_actor),
    policy: RolePolicy = Depends(get_policy),
    queue: ApprovalQueueAggregator = Depends(get_approval_queue)
):
    policy.require(actor, Operation.VIEW_QUEUE)
    return queue.pending_count()
