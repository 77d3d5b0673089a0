import logging

from src.models import AccessLog
from src.access.scan_service import ScanValidationService
from src.access.schemas import (
    AccessCode, AccessResult, ScanStatus, OfflineSyncRequest, OfflineSyncResponse, OfflineSyncResult,
    OfflineSyncSummary, OfflineValidation
)
from src.access.timeutils import utc_now, to_naive_utc

logger = logging.getLogger(__name__)

class OfflineBatchTooLarge(ValueError):
    pass

class OfflineSyncService:
    """Replays scans buffered by disconnected agents through the live decision path.

    Entries are evaluated in the order they were scanned, at the time they were
    scanned. Delivery is at-least-once: an entry whose ``scan_id`` is already
    in the ledger is answered from the ledger, and entries without one rely on
    the ticket status and the timing windows not to grant twice.
    """

    def __init__(self, scan_service: ScanValidationService):
        self.scan_service = scan_service
        self.ledger = scan_service.ledger
        self.max_batch_size = scan_service.config.OFFLINE_BATCH_MAX_SIZE

    def sync(self, request: OfflineSyncRequest) -> OfflineSyncResponse:
        if len(request.validations) > self.max_batch_size:
            raise OfflineBatchTooLarge(
                f"Batch of {len(request.validations)} scans exceeds the limit of {self.max_batch_size}"
            )

        ordered = sorted(request.validations, key=lambda v: to_naive_utc(v.timestamp))
        results = [self._replay(request.device_id, validation) for validation in ordered]

        summary = OfflineSyncSummary(
            total=len(results),
            success=len([r for r in results if r.status == ScanStatus.SUCCESS]),
            warnings=len([r for r in results if r.status == ScanStatus.WARNING]),
            errors=len([r for r in results if r.status == ScanStatus.ERROR]),
            duplicates=len([r for r in results if r.duplicate])
        )

        logger.info(
            f"Offline sync from device {request.device_id}: {summary.total} scans, "
            f"{summary.success} granted, {summary.errors} denied, {summary.duplicates} duplicates"
        )

        return OfflineSyncResponse(
            message="Synchronisation completed",
            summary=summary,
            details=results
        )

    def _replay(self, device_id: int, validation: OfflineValidation) -> OfflineSyncResult:
        if validation.scan_id:
            existing = self.ledger.find_by_scan_id(validation.scan_id)
            if existing is not None:
                return self._duplicate(validation, existing)

        # A skewed handset clock must not push a scan into the future
        scanned_at = min(to_naive_utc(validation.timestamp), utc_now())

        response = self.scan_service.validate(
            validation.credential,
            device_id=device_id,
            direction=validation.direction,
            trip_id=validation.trip_id,
            scanned_at=scanned_at,
            client_scan_id=validation.scan_id
        )

        # A concurrent upload of the same batch may have claimed the scan_id first
        if response.code == AccessCode.SYSTEM_ERROR and validation.scan_id:
            existing = self.ledger.find_by_scan_id(validation.scan_id)
            if existing is not None:
                return self._duplicate(validation, existing)

        return OfflineSyncResult(
            scan_id=validation.scan_id,
            credential=_mask(validation.credential),
            timestamp=validation.timestamp,
            status=response.status,
            code=response.code,
            message=response.message
        )

    def _duplicate(self, validation: OfflineValidation, existing: AccessLog) -> OfflineSyncResult:
        """Answer a replayed scan_id with the outcome already in the ledger.

        Grants and bypasses come back as ``ALREADY_USED``; denials keep the
        code they were refused with so the agent sees the real reason.
        """
        code = AccessCode.ALREADY_USED
        status = ScanStatus.ERROR
        if existing.result == AccessResult.DENIED.value and existing.deny_reason:
            reason_code = existing.deny_reason.split(" ", 1)[0]
            if reason_code in AccessCode.__members__:
                code = AccessCode(reason_code)
                if code == AccessCode.DEPARTED:
                    status = ScanStatus.WARNING

        return OfflineSyncResult(
            scan_id=validation.scan_id,
            credential=_mask(validation.credential),
            timestamp=validation.timestamp,
            status=status,
            code=code,
            message=f"Scan already synchronised (original result: {existing.result})",
            details={"original_result": existing.result, "deny_reason": existing.deny_reason},
            duplicate=True
        )

def _mask(credential: str) -> str:
    if len(credential) <= 20:
        return credential
    return credential[:20] + "..."
