"""
Access Validation Module

This module decides, at the gate, whether a passenger presenting a ticket QR
code or an RFID subscription badge may pass. It includes:

- Ticket code parsing and HMAC signature verification (V1 and V2 formats)
- Entitlement lookup for tickets and subscriptions
- The boarding decision engine with anti-replay and anti-passback windows
- An append-only access ledger used for audit and for the timing rules
- Offline scan buffering on agent handsets and server-side batch replay

Key Components:
- codec.py: TicketCodeSigner and credential classification
- resolver.py: Ticket and subscription lookup
- ledger.py: Access log writes and queries
- scan_service.py: ScanValidationService, the decision engine
- offline_sync.py: Replay of offline batches in scan order
- offline_queue.py: Durable client-side queue of offline scans
- router.py: FastAPI endpoints for agents, turnstiles and supervisors
- schemas.py: Pydantic models and decision codes
"""

from .router import router
from .codec import TicketCodeSigner, TicketCodeError, classify_credential
from .scan_service import ScanValidationService
from .offline_sync import OfflineSyncService
from .offline_queue import OfflineScanQueue
from .schemas import (
    AccessCode, AccessResult, ScanDirection, ScanStatus, TicketStatus,
    ParsedTicketCode, ValidationRequest, ValidationResponse, OfflineSyncRequest,
    OfflineSyncResponse
)

__all__ = [
    "router",
    "TicketCodeSigner",
    "TicketCodeError",
    "classify_credential",
    "ScanValidationService",
    "OfflineSyncService",
    "OfflineScanQueue",
    "AccessCode",
    "AccessResult",
    "ScanDirection",
    "ScanStatus",
    "TicketStatus",
    "ParsedTicketCode",
    "ValidationRequest",
    "ValidationResponse",
    "OfflineSyncRequest",
    "OfflineSyncResponse"
]
