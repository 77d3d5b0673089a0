"""
Ticket code parsing and signing.

Ticket QR codes are pipe-delimited strings carrying a truncated HMAC-SHA256
signature over ``ticket_id + booking_reference``::

    V1|<ticket_id>|<booking_reference>|<trip_id>|<sig8hex>
    V2|<ticket_id>|<booking_reference>|<trip_id>|<return_trip_id_or_empty>|<sig8hex>

RFID badges carry no structure: the trimmed UID is the lookup key.
"""

from dataclasses import dataclass
from typing import Optional, Union
import hashlib
import hmac

from src.access.schemas import AccessCode, ParsedTicketCode

SIGNATURE_LENGTH = 8
FIELD_SEPARATOR = "|"

# Field count for each supported wire version
FORMAT_FIELD_COUNTS = {
    "V1": 5,
    "V2": 6,
}

class TicketCodeError(Exception):
    """Raised when a ticket code cannot be trusted"""

    def __init__(self, code: AccessCode, message: str, ticket_id: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.ticket_id = ticket_id

@dataclass(frozen=True)
class TicketCredential:
    raw: str

@dataclass(frozen=True)
class BadgeCredential:
    uid: str

@dataclass(frozen=True)
class UnrecognizedCredential:
    raw: str

Credential = Union[TicketCredential, BadgeCredential, UnrecognizedCredential]

def classify_credential(raw: Optional[str]) -> Credential:
    """Decide once, at the boundary, which validation path a credential takes"""
    value = (raw or "").strip()
    if not value:
        return UnrecognizedCredential(raw=raw or "")
    if FIELD_SEPARATOR in value:
        return TicketCredential(raw=value)
    return BadgeCredential(uid=value)

class TicketCodeSigner:
    """Issues and verifies signed ticket codes with a server secret"""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Ticket signing secret must not be empty")
        self._key = secret.encode()

    def signature(self, ticket_id: str, booking_reference: str) -> str:
        digest = hmac.new(self._key, f"{ticket_id}{booking_reference}".encode(), hashlib.sha256).hexdigest()
        return digest[:SIGNATURE_LENGTH]

    def encode(
        self,
        ticket_id: str,
        booking_reference: str,
        trip_id: str,
        return_trip_id: Optional[str] = None
    ) -> str:
        """Build a V2 code, the format issued for new tickets"""
        return FIELD_SEPARATOR.join([
            "V2",
            str(ticket_id),
            booking_reference,
            str(trip_id),
            str(return_trip_id) if return_trip_id else "",
            self.signature(str(ticket_id), booking_reference)
        ])

    def encode_v1(self, ticket_id: str, booking_reference: str, trip_id: str) -> str:
        """Build a legacy V1 code (no return trip)"""
        return FIELD_SEPARATOR.join([
            "V1",
            str(ticket_id),
            booking_reference,
            str(trip_id),
            self.signature(str(ticket_id), booking_reference)
        ])

    def parse(self, raw: str) -> ParsedTicketCode:
        """Parse and verify a ticket code.

        Pure function of the input and the secret. Raises ``TicketCodeError``
        with ``INVALID_FORMAT``, ``UNSUPPORTED_VERSION`` or ``INVALID_SIGNATURE``.
        """
        parts = (raw or "").strip().split(FIELD_SEPARATOR)
        version = parts[0]

        if version not in FORMAT_FIELD_COUNTS:
            if len(parts) in FORMAT_FIELD_COUNTS.values():
                raise TicketCodeError(AccessCode.UNSUPPORTED_VERSION, "Unsupported ticket code version")
            raise TicketCodeError(AccessCode.INVALID_FORMAT, "Invalid ticket code format")

        if len(parts) != FORMAT_FIELD_COUNTS[version]:
            raise TicketCodeError(AccessCode.INVALID_FORMAT, "Invalid ticket code format")

        if version == "V1":
            _, ticket_id, booking_reference, trip_id, supplied = parts
            return_trip_id = None
        else:
            _, ticket_id, booking_reference, trip_id, return_trip_id, supplied = parts

        if not ticket_id or not booking_reference or not trip_id:
            raise TicketCodeError(AccessCode.INVALID_FORMAT, "Invalid ticket code format")

        expected = self.signature(ticket_id, booking_reference)
        if not hmac.compare_digest(expected.encode(), supplied.encode()):
            raise TicketCodeError(
                AccessCode.INVALID_SIGNATURE,
                "Invalid or forged ticket code",
                ticket_id=ticket_id
            )

        return ParsedTicketCode(
            version=version,
            ticket_id=ticket_id,
            booking_reference=booking_reference,
            trip_id=trip_id,
            return_trip_id=return_trip_id or None,
            signature=supplied
        )
