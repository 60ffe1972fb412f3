"""ApprovalQueueAggregator - read-only fan-in over the three pending queues."""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from barangay.errors import ValidationError
from barangay.models.enums import CertificateType, RequestKind
from barangay.services.cases import BlotterWorkflowService, IncidentWorkflowService
from barangay.services.certificates import CertificateWorkflowService


@dataclass(frozen=True)
class PendingWorkItem:
    kind: str
    id: int
    title: str
    subtitle: str
    requested_by: str
    requested_at: datetime


# Statistics keys per kind, as the dashboard badge reads them
_COUNT_KEYS = {
    RequestKind.CERTIFICATE: "certificates",
    RequestKind.BLOTTER: "blotters",
    RequestKind.INCIDENT: "incidents",
}


def _certificate_item(request) -> PendingWorkItem:
    certificate_type = CertificateType(request.certificate_type)
    return PendingWorkItem(
        kind=RequestKind.CERTIFICATE.value,
        id=request.id,
        title=f"{certificate_type.label} - resident #{request.resident_ref}",
        subtitle=f"Purpose: {request.purpose}",
        requested_by=request.requested_by,
        requested_at=request.requested_at,
    )


def _case_item(service, record) -> PendingWorkItem:
    return PendingWorkItem(
        kind=service.kind.value,
        id=record.id,
        title=service.title_for(record),
        subtitle=service.subtitle_for(record),
        requested_by=record.requested_by,
        requested_at=record.requested_at,
    )


class ApprovalQueueAggregator:
    """
    Merges pending certificates, blotters and incidents into one queue.

    Items and counts come from the same fan-out, so the badge count can never
    disagree with the list.
    """

    def __init__(
        self,
        certificates: CertificateWorkflowService,
        blotters: BlotterWorkflowService,
        incidents: IncidentWorkflowService
    ):
        self.certificates = certificates
        self.blotters = blotters
        self.incidents = incidents

    def _fan_out(self) -> dict:
        return {
            RequestKind.CERTIFICATE: [_certificate_item(r) for r in self.certificates.list_pending()],
            RequestKind.BLOTTER: [_case_item(self.blotters, r) for r in self.blotters.list_pending()],
            RequestKind.INCIDENT: [_case_item(self.incidents, r) for r in self.incidents.list_pending()],
        }

    def list_pending(self, type_filter: Optional[str] = None) -> dict:
        """
        Returns {items, statistics}.

        Items are newest first; ties fall back to kind then id so pages are
        stable. total_pending counts the returned items, the per-kind counts
        are always unfiltered.
        """
        if type_filter is not None:
            try:
                type_filter = RequestKind(type_filter)
            except ValueError:
                allowed = ", ".join(k.value for k in RequestKind)
                raise ValidationError("type", f"Type must be one of: {allowed}")

        by_kind = self._fan_out()
        items: List[PendingWorkItem] = []
        for kind, kind_items in by_kind.items():
            if type_filter is None or kind == type_filter:
                items.extend(kind_items)

        # Two stable passes: ascending tie-breakers first, then newest first
        items.sort(key=lambda item: (item.kind, item.id))
        items.sort(key=lambda item: item.requested_at, reverse=True)

        statistics = {"total_pending": len(items)}
        for kind, kind_items in by_kind.items():
            statistics[_COUNT_KEYS[kind]] = len(kind_items)
        return {"items": items, "statistics": statistics}

    def pending_count(self) -> dict:
        return self.list_pending()["statistics"]
