from fastapi import APIRouter, Depends, HTTPException, status, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime, date

from src.database import get_db
from src.models import AccessDevice
from src.auth.dependencies import get_current_user, require_supervisor
from src.auth.schemas import StaffUser
from src.access.schemas import (
    AccessCode, ScanStatus, TicketStatus, ValidationRequest, ValidationResponse, DeviceScanRequest,
    DeviceScanResponse, BypassRequest, OfflineSyncRequest, OfflineSyncResponse, AccessLogEntry,
    DeviceStatistics, TripBoardingSummary, TripPassenger
)
from src.access.scan_service import ScanValidationService
from src.access.offline_sync import OfflineSyncService, OfflineBatchTooLarge
from src.access.ledger import AccessLedger, describe_entry
from src.access.resolver import EntitlementResolver
from src.access.dependencies import (
    get_scan_service, get_offline_sync_service, get_current_device, ensure_device_exists
)
from src.access.timeutils import utc_now, to_naive_utc

router = APIRouter()

def _status_code_for(response: ValidationResponse) -> int:
    if response.code == AccessCode.SYSTEM_ERROR:
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    if response.is_authorized:
        return status.HTTP_200_OK
    return status.HTTP_400_BAD_REQUEST

def _decision_response(response: ValidationResponse) -> JSONResponse:
    return JSONResponse(
        content=jsonable_encoder(response, exclude_none=True),
        status_code=_status_code_for(response)
    )

# Scan Endpoints
@router.post("/scan/validate", response_model=ValidationResponse)
def validate_scan(
    validation_request: ValidationRequest,
    db: Session = Depends(get_db),
    scan_service: ScanValidationService = Depends(get_scan_service),
    current_user: StaffUser = Depends(get_current_user)
):
    """Validate a ticket QR code or RFID badge presented to an agent"""

    ensure_device_exists(db, validation_request.device_id)

    response = scan_service.validate(
        validation_request.credential,
        device_id=validation_request.device_id,
        direction=validation_request.direction,
        trip_id=validation_request.trip_id
    )
    return _decision_response(response)

@router.post("/device/scan", response_model=DeviceScanResponse)
def device_scan(
    scan_request: DeviceScanRequest,
    device: AccessDevice = Depends(get_current_device),
    scan_service: ScanValidationService = Depends(get_scan_service)
):
    """Validate a scan coming from a fixed turnstile (X-Device-Token)"""

    result = scan_service.validate(
        scan_request.uid,
        device_id=device.id,
        direction=scan_request.scan_direction
    )

    passenger_name = "Unknown"
    if result.passenger and result.passenger.name:
        passenger_name = result.passenger.name
    elif result.badge_info:
        passenger_name = result.badge_info.owner_name

    # Warnings keep the turnstile closed
    hardware_response = DeviceScanResponse(
        status=result.status,
        open=result.status == ScanStatus.SUCCESS,
        message=result.message,
        passenger_name=passenger_name,
        timestamp=utc_now()
    )

    return JSONResponse(
        content=jsonable_encoder(hardware_response),
        status_code=status.HTTP_200_OK if hardware_response.open else status.HTTP_400_BAD_REQUEST
    )

@router.post("/scan/sync", response_model=OfflineSyncResponse)
def sync_offline_scans(
    sync_request: OfflineSyncRequest,
    db: Session = Depends(get_db),
    sync_service: OfflineSyncService = Depends(get_offline_sync_service),
    current_user: StaffUser = Depends(get_current_user)
):
    """Replay scans recorded while the agent handset was offline"""

    ensure_device_exists(db, sync_request.device_id)

    try:
        return sync_service.sync(sync_request)
    except OfflineBatchTooLarge as e:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=str(e)
        )

@router.post("/scan/bypass", response_model=ValidationResponse)
def bypass_scan(
    bypass_request: BypassRequest,
    db: Session = Depends(get_db),
    scan_service: ScanValidationService = Depends(get_scan_service),
    supervisor: StaffUser = Depends(require_supervisor)
):
    """Force boarding of a ticket (supervisor only, always logged)"""

    ensure_device_exists(db, bypass_request.device_id)

    response = scan_service.bypass(
        bypass_request.credential,
        bypass_request.reason,
        device_id=bypass_request.device_id,
        supervisor_id=supervisor.id
    )
    return _decision_response(response)

# Reporting Endpoints
@router.get("/scan/statistics")
def get_scan_statistics(
    device_id: Optional[int] = Query(None, description="Device to report on"),
    trip_id: Optional[str] = Query(None, description="Trip to report on"),
    day: Optional[date] = Query(None, alias="date", description="Day (YYYY-MM-DD), defaults to today"),
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(get_current_user)
):
    """Scan statistics for a device, or boarding progress for a trip"""

    if trip_id:
        tickets = EntitlementResolver(db).trip_tickets(trip_id)
        return {
            "trip_id": trip_id,
            "total_passengers": len(tickets),
            "boarding_count": len([t for t in tickets if t.status == TicketStatus.BOARDED.value])
        }

    if device_id is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="device_id or trip_id is required"
        )

    stats = AccessLedger(db).device_statistics(device_id, day or utc_now().date())
    return DeviceStatistics(**stats)

@router.get("/scan/trip/{trip_id}/passengers", response_model=TripBoardingSummary)
def get_trip_passengers(
    trip_id: str,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(get_current_user)
):
    """Boarding status of every passenger booked on a trip"""

    tickets = EntitlementResolver(db).trip_tickets(trip_id)

    passengers = [
        TripPassenger(
            ticket_id=t.id,
            passenger_name=t.passenger_name,
            passenger_type=t.passenger_type,
            status=t.status,
            used_at=to_naive_utc(t.used_at).strftime("%H:%M") if t.used_at else None,
            booking_reference=t.booking.booking_reference
        )
        for t in tickets
    ]

    return TripBoardingSummary(
        trip_id=trip_id,
        total_passengers=len(passengers),
        boarded=len([p for p in passengers if p.status == TicketStatus.BOARDED.value]),
        pending=len([p for p in passengers if p.status in (TicketStatus.ISSUED.value, TicketStatus.VALID.value)]),
        passengers=passengers
    )

@router.get("/scan/tickets/{ticket_id}/boarding", response_model=AccessLogEntry)
def get_ticket_boarding(
    ticket_id: str,
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(get_current_user)
):
    """Ledger entry that boarded a ticket.

    Lets a handset whose scan request timed out find out whether the scan
    went through before retrying it.
    """

    entry = AccessLedger(db).ticket_boarding_entry(ticket_id)
    if not entry:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No boarding recorded for this ticket"
        )
    return AccessLogEntry(**describe_entry(entry))

# Monitoring Endpoints
@router.get("/logs", response_model=List[AccessLogEntry])
def get_access_logs(
    limit: int = Query(20, ge=1, le=200, description="Maximum number of entries"),
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(get_current_user)
):
    """Latest access log entries, newest first"""

    entries = AccessLedger(db).recent(limit)
    return [AccessLogEntry(**describe_entry(e)) for e in entries]

@router.get("/logs/latest", response_model=List[AccessLogEntry])
def get_latest_access_logs(
    since: Optional[datetime] = Query(None, description="Only entries scanned after this time"),
    db: Session = Depends(get_db),
    current_user: StaffUser = Depends(get_current_user)
):
    """Entries recorded since the last poll (max 10)"""

    entries = AccessLedger(db).latest(since)
    return [AccessLogEntry(**describe_entry(e)) for e in entries]
