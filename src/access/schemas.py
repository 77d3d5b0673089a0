from pydantic import BaseModel, Field, validator
from typing import List, Optional, Dict, Literal, Any
from datetime import datetime
from enum import Enum

class ScanDirection(str, Enum):
    """Direction of passage through a gate"""
    ENTRY = "entry"
    EXIT = "exit"

class AccessResult(str, Enum):
    """Outcome recorded in the access ledger"""
    GRANTED = "granted"
    DENIED = "denied"
    BYPASS = "bypass"

class ScanStatus(str, Enum):
    """Response status shown on the scanning device"""
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"

class AccessCode(str, Enum):
    """Decision codes returned to the scanning device"""
    BOARDING_AUTHORIZED = "BOARDING_AUTHORIZED"
    ACCESS_GRANTED = "ACCESS_GRANTED"
    BYPASS_AUTHORIZED = "BYPASS_AUTHORIZED"
    # Format / integrity
    INVALID_FORMAT = "INVALID_FORMAT"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    UNSUPPORTED_VERSION = "UNSUPPORTED_VERSION"
    UNRECOGNIZED_CREDENTIAL = "UNRECOGNIZED_CREDENTIAL"
    # Not found
    TICKET_NOT_FOUND = "TICKET_NOT_FOUND"
    BADGE_NOT_FOUND = "BADGE_NOT_FOUND"
    # Business state
    ALREADY_USED = "ALREADY_USED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    WRONG_TRIP = "WRONG_TRIP"
    BADGE_INACTIVE = "BADGE_INACTIVE"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    # Timing
    SCAN_TOO_FAST = "SCAN_TOO_FAST"
    ANTI_PASSBACK = "ANTI_PASSBACK"
    # Soft warning
    DEPARTED = "DEPARTED"
    SYSTEM_ERROR = "SYSTEM_ERROR"

class TicketStatus(str, Enum):
    """Ticket lifecycle states"""
    ISSUED = "issued"
    VALID = "valid"
    BOARDED = "boarded"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

BOARDABLE_STATUSES = (TicketStatus.ISSUED.value, TicketStatus.VALID.value)

# Parsed credentials
class ParsedTicketCode(BaseModel):
    """Verified content of a ticket QR code"""
    version: Literal["V1", "V2"]
    ticket_id: str
    booking_reference: str
    trip_id: str
    return_trip_id: Optional[str] = None
    signature: str

    class Config:
        frozen = True

# Response payloads
class PassengerInfo(BaseModel):
    """Passenger summary shown to the agent after a ticket scan"""
    name: Optional[str] = None
    type: str
    nationality: str
    seat: str = "Not assigned"

class TripInfo(BaseModel):
    """Trip summary shown to the agent after a ticket scan"""
    id: str
    route: str
    ship: str
    departure: str

class BadgeInfo(BaseModel):
    """Badge summary shown to the agent after an RFID scan"""
    owner_name: str
    plan_name: str
    remaining_credits: Any
    expires_at: str
    allow_multi_passenger: bool = False

class ValidationResponse(BaseModel):
    """Decision returned for a single scan"""
    status: ScanStatus
    code: AccessCode
    message: str
    details: Optional[Dict[str, Any]] = None
    passenger: Optional[PassengerInfo] = None
    trip: Optional[TripInfo] = None
    badge_info: Optional[BadgeInfo] = None
    booking_reference: Optional[str] = None
    wait_seconds: Optional[int] = None

    @property
    def is_authorized(self) -> bool:
        return self.status in (ScanStatus.SUCCESS, ScanStatus.WARNING)

# Requests
class ValidationRequest(BaseModel):
    """Scan submitted by an agent handset"""
    credential: str = Field(..., min_length=1, max_length=255)
    device_id: Optional[int] = None
    direction: ScanDirection = ScanDirection.ENTRY
    trip_id: Optional[str] = Field(None, description="Trip the agent is currently boarding")

class DeviceScanRequest(BaseModel):
    """Scan submitted by a fixed turnstile"""
    uid: str = Field(..., min_length=1, max_length=255)
    direction: Literal["in", "out"] = "in"

    @property
    def scan_direction(self) -> ScanDirection:
        return ScanDirection.ENTRY if self.direction == "in" else ScanDirection.EXIT

class DeviceScanResponse(BaseModel):
    """Simplified decision for turnstile hardware"""
    status: ScanStatus
    open: bool
    message: str
    passenger_name: str
    timestamp: datetime

class BypassRequest(BaseModel):
    """Supervisor-forced boarding"""
    credential: str = Field(..., min_length=1, max_length=255)
    reason: str = Field(..., min_length=3, max_length=500)
    device_id: Optional[int] = None

class OfflineValidation(BaseModel):
    """One scan buffered by a disconnected agent"""
    credential: str = Field(..., min_length=1, max_length=255)
    timestamp: datetime
    scan_id: Optional[str] = Field(None, max_length=64, description="Client-generated idempotency key")
    trip_id: Optional[str] = None
    direction: ScanDirection = ScanDirection.ENTRY

class OfflineSyncRequest(BaseModel):
    """Batch of offline scans uploaded once connectivity returns"""
    device_id: int
    validations: List[OfflineValidation]

    @validator('validations')
    def validate_validations(cls, v):
        if not v:
            raise ValueError('At least one validation is required')
        return v

class OfflineSyncResult(BaseModel):
    """Outcome of one replayed offline scan"""
    scan_id: Optional[str] = None
    credential: str
    timestamp: datetime
    status: ScanStatus
    code: AccessCode
    message: str
    details: Optional[Dict[str, Any]] = None
    duplicate: bool = False

class OfflineSyncSummary(BaseModel):
    total: int
    success: int
    warnings: int
    errors: int
    duplicates: int

class OfflineSyncResponse(BaseModel):
    message: str
    summary: OfflineSyncSummary
    details: List[OfflineSyncResult]

# Monitoring
class AccessLogEntry(BaseModel):
    """Ledger row as exposed to monitoring screens"""
    id: str
    ticket_id: Optional[str] = None
    subscription_id: Optional[str] = None
    device_id: Optional[int] = None
    direction: ScanDirection
    result: AccessResult
    deny_reason: Optional[str] = None
    scanned_at: datetime
    passenger_name: Optional[str] = None
    device_name: Optional[str] = None

    class Config:
        from_attributes = True

class DeviceStatistics(BaseModel):
    device_id: int
    date: str
    total_scans: int
    granted: int
    denied: int
    success_rate: float

class TripPassenger(BaseModel):
    ticket_id: str
    passenger_name: Optional[str] = None
    passenger_type: str
    status: str
    used_at: Optional[str] = None
    booking_reference: str

class TripBoardingSummary(BaseModel):
    trip_id: str
    total_passengers: int
    boarded: int
    pending: int
    passengers: List[TripPassenger]
