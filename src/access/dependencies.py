from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session
from functools import lru_cache
from typing import Optional

from src.config import settings
from src.database import get_db
from src.models import AccessDevice
from src.access.codec import TicketCodeSigner
from src.access.scan_service import ScanValidationService
from src.access.offline_sync import OfflineSyncService

@lru_cache()
def get_ticket_signer() -> TicketCodeSigner:
    """Signer built once from the configured server secret"""
    return TicketCodeSigner(settings.TICKET_SIGNING_SECRET)

def get_scan_service(
    db: Session = Depends(get_db),
    signer: TicketCodeSigner = Depends(get_ticket_signer)
) -> ScanValidationService:
    return ScanValidationService(db, signer, settings)

def get_offline_sync_service(
    scan_service: ScanValidationService = Depends(get_scan_service)
) -> OfflineSyncService:
    return OfflineSyncService(scan_service)

def get_current_device(
    x_device_token: Optional[str] = Header(None, alias="X-Device-Token"),
    db: Session = Depends(get_db)
) -> AccessDevice:
    """Authenticate a fixed gate by its API token"""
    if not x_device_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing device token"
        )
    
    device = db.query(AccessDevice).filter(AccessDevice.api_token == x_device_token).first()
    if not device:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown device"
        )
    return device

def ensure_device_exists(db: Session, device_id: Optional[int]) -> None:
    """Reject scans attributed to a device the store does not know"""
    if device_id is None:
        return
    if not db.query(AccessDevice.id).filter(AccessDevice.id == device_id).first():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Access device {device_id} not found"
        )
