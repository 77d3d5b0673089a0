from typing import Dict, Optional, Any
from datetime import datetime, timedelta
from sqlalchemy.orm import Session
import logging
import math

from src.config import Settings, settings as default_settings
from src.models import Ticket, Subscription
from src.access.codec import (
    TicketCodeSigner, TicketCodeError, TicketCredential, BadgeCredential, classify_credential
)
from src.access.resolver import EntitlementResolver, EntitlementNotFound
from src.access.ledger import AccessLedger
from src.access.schemas import (
    AccessCode, AccessResult, ScanDirection, ScanStatus, TicketStatus, BOARDABLE_STATUSES,
    ValidationResponse, PassengerInfo, TripInfo, BadgeInfo
)
from src.access.timeutils import utc_now, to_naive_utc, format_datetime

logger = logging.getLogger(__name__)

PASSENGER_TYPE_LABELS = {
    "adult": "Adult",
    "child": "Child",
    "baby": "Infant",
}

NATIONALITY_LABELS = {
    "national": "National/ECOWAS",
    "resident": "Resident",
    "african": "African",
    "hors_afrique": "Non-African",
    "non-resident": "Foreign",
}

class ScanValidationService:
    """Grants or denies passage for a presented credential.

    Every call resolves the credential, evaluates the guard checks in a fixed
    order and, when passage is granted, applies the entitlement change and the
    ledger entry in one transaction. Business-rule failures come back as
    ``ValidationResponse`` objects; only unexpected errors are turned into
    ``SYSTEM_ERROR`` here.
    """

    def __init__(self, db: Session, signer: TicketCodeSigner, config: Optional[Settings] = None):
        self.db = db
        self.signer = signer
        self.config = config or default_settings
        self.resolver = EntitlementResolver(db)
        self.ledger = AccessLedger(db)

    @property
    def replay_window(self) -> int:
        return self.config.SCAN_REPLAY_WINDOW_SECONDS

    @property
    def passback_window(self) -> int:
        return self.config.ANTI_PASSBACK_WINDOW_SECONDS

    def validate(
        self,
        credential: str,
        device_id: Optional[int] = None,
        direction: ScanDirection = ScanDirection.ENTRY,
        trip_id: Optional[str] = None,
        scanned_at: Optional[datetime] = None,
        client_scan_id: Optional[str] = None
    ) -> ValidationResponse:
        """Validate one scan of a ticket code or badge UID"""

        at = to_naive_utc(scanned_at) or utc_now()
        presented = classify_credential(credential)

        try:
            if isinstance(presented, TicketCredential):
                return self.validate_ticket(presented.raw, device_id, direction, trip_id, at, client_scan_id)
            if isinstance(presented, BadgeCredential):
                return self.validate_badge(presented.uid, device_id, direction, at, client_scan_id)

            self._record_denial(AccessCode.UNRECOGNIZED_CREDENTIAL, device_id, direction, at, client_scan_id=client_scan_id)
            self.db.commit()
            return self._error(AccessCode.UNRECOGNIZED_CREDENTIAL, "Credential not recognised")

        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Scan validation failed for credential {credential!r} on device {device_id}: {e}",
                exc_info=True
            )
            return self._error(
                AccessCode.SYSTEM_ERROR,
                "System error during validation",
                details={"error": str(e)} if self.config.DEBUG else None
            )

    # ------------------------------------------------------------------
    # Ticket path
    # ------------------------------------------------------------------
    def validate_ticket(
        self,
        raw: str,
        device_id: Optional[int],
        direction: ScanDirection,
        trip_id: Optional[str],
        at: datetime,
        client_scan_id: Optional[str] = None
    ) -> ValidationResponse:
        try:
            parsed = self.signer.parse(raw)
        except TicketCodeError as e:
            if e.code == AccessCode.INVALID_SIGNATURE:
                logger.warning(f"Forged ticket code detected for ticket {e.ticket_id} on device {device_id}")
            self._record_denial(e.code, device_id, direction, at, client_scan_id=client_scan_id)
            self.db.commit()
            return self._error(e.code, e.message)

        try:
            ticket = self.resolver.resolve_ticket(parsed)
        except EntitlementNotFound as e:
            self._record_denial(e.code, device_id, direction, at, client_scan_id=client_scan_id)
            self.db.commit()
            return self._error(e.code, e.message, details={"ticket_id": parsed.ticket_id})

        # The code and the boarding context must both point at the ticket's trip
        if ticket.trip_id != parsed.trip_id or (trip_id and trip_id != ticket.trip_id):
            response = self._error(
                AccessCode.WRONG_TRIP,
                "This ticket is not valid for this trip",
                details={
                    "ticket_trip": ticket.trip.route.name if ticket.trip else ticket.trip_id,
                    "scanned_trip_id": trip_id or parsed.trip_id
                }
            )
            return self._deny_ticket(response, ticket, device_id, direction, at, client_scan_id)

        denial = self._ticket_state_denial(ticket)
        if denial:
            return self._deny_ticket(denial, ticket, device_id, direction, at, client_scan_id)

        departure = to_naive_utc(ticket.trip.departure_time)
        if departure < at - timedelta(minutes=self.config.DEPARTED_GRACE_MINUTES):
            response = ValidationResponse(
                status=ScanStatus.WARNING,
                code=AccessCode.DEPARTED,
                message="The ship has already departed",
                details={
                    "departure_time": format_datetime(departure),
                    "passenger_name": ticket.passenger_name
                }
            )
            return self._deny_ticket(response, ticket, device_id, direction, at, client_scan_id)

        # Check-and-set: only one scan can move the ticket out of a boardable state
        updated = (
            self.db.query(Ticket)
            .filter(Ticket.id == ticket.id, Ticket.status.in_(BOARDABLE_STATUSES))
            .update({Ticket.status: TicketStatus.BOARDED.value, Ticket.used_at: at}, synchronize_session=False)
        )

        if updated == 0:
            self.db.rollback()
            ticket = self.resolver.get_ticket(parsed.ticket_id)
            denial = self._ticket_state_denial(ticket) or self._error(
                AccessCode.ALREADY_USED, "Passenger already boarded"
            )
            return self._deny_ticket(denial, ticket, device_id, direction, at, client_scan_id)

        self.ledger.record(
            ticket_id=ticket.id,
            device_id=device_id,
            direction=direction,
            result=AccessResult.GRANTED,
            scanned_at=at,
            client_scan_id=client_scan_id
        )
        self.db.commit()
        self.db.refresh(ticket)

        logger.info(f"Boarding authorized for ticket {ticket.id} on device {device_id}")

        return ValidationResponse(
            status=ScanStatus.SUCCESS,
            code=AccessCode.BOARDING_AUTHORIZED,
            message="Boarding authorized",
            passenger=self._passenger_info(ticket),
            trip=self._trip_info(ticket),
            booking_reference=ticket.booking.booking_reference if ticket.booking else None
        )

    def bypass(
        self,
        credential: str,
        reason: str,
        device_id: Optional[int] = None,
        supervisor_id: Optional[int] = None,
        scanned_at: Optional[datetime] = None
    ) -> ValidationResponse:
        """Force a ticket to boarded, whatever its current status.

        The code must still carry a valid signature. The previous status and
        the supervisor's reason are written to the ledger as a ``bypass`` row.
        """
        at = to_naive_utc(scanned_at) or utc_now()

        try:
            try:
                parsed = self.signer.parse(credential)
                ticket = self.resolver.resolve_ticket(parsed)
            except (TicketCodeError, EntitlementNotFound) as e:
                return self._error(e.code, e.message)

            previous_status = ticket.status
            if previous_status != TicketStatus.BOARDED.value:
                self.db.query(Ticket).filter(Ticket.id == ticket.id).update(
                    {Ticket.status: TicketStatus.BOARDED.value, Ticket.used_at: at},
                    synchronize_session=False
                )

            note = f"BYPASS (previous status: {previous_status}): {reason.strip()}"
            if supervisor_id is not None:
                note = f"{note} [supervisor {supervisor_id}]"

            self.ledger.record(
                ticket_id=ticket.id,
                device_id=device_id,
                direction=ScanDirection.ENTRY,
                result=AccessResult.BYPASS,
                deny_reason=note,
                scanned_at=at
            )
            self.db.commit()
            self.db.refresh(ticket)

        except Exception as e:
            self.db.rollback()
            logger.error(f"Bypass failed for credential {credential!r} on device {device_id}: {e}", exc_info=True)
            return self._error(
                AccessCode.SYSTEM_ERROR,
                "System error during bypass",
                details={"error": str(e)} if self.config.DEBUG else None
            )

        logger.info(
            f"Bypass boarding for ticket {ticket.id} (was {previous_status}) "
            f"by supervisor {supervisor_id} on device {device_id}"
        )

        return ValidationResponse(
            status=ScanStatus.SUCCESS,
            code=AccessCode.BYPASS_AUTHORIZED,
            message="Boarding forced by supervisor",
            details={"previous_status": previous_status, "reason": reason.strip()},
            passenger=self._passenger_info(ticket),
            trip=self._trip_info(ticket),
            booking_reference=ticket.booking.booking_reference if ticket.booking else None
        )

    def _ticket_state_denial(self, ticket: Ticket) -> Optional[ValidationResponse]:
        if ticket.status == TicketStatus.BOARDED.value:
            return self._error(
                AccessCode.ALREADY_USED,
                "Passenger already boarded",
                details={
                    "used_at": format_datetime(to_naive_utc(ticket.used_at)),
                    "passenger_name": ticket.passenger_name
                }
            )
        if ticket.status == TicketStatus.CANCELLED.value:
            return self._error(AccessCode.CANCELLED, "Ticket cancelled")
        if ticket.status == TicketStatus.REFUNDED.value:
            return self._error(AccessCode.REFUNDED, "Ticket refunded")
        return None

    def _deny_ticket(
        self,
        response: ValidationResponse,
        ticket: Ticket,
        device_id: Optional[int],
        direction: ScanDirection,
        at: datetime,
        client_scan_id: Optional[str]
    ) -> ValidationResponse:
        self._record_denial(response.code, device_id, direction, at, ticket_id=ticket.id, client_scan_id=client_scan_id)
        self.db.commit()
        logger.info(f"Ticket {ticket.id} denied with {response.code.value} on device {device_id}")
        return response

    # ------------------------------------------------------------------
    # Badge path
    # ------------------------------------------------------------------
    def validate_badge(
        self,
        uid: str,
        device_id: Optional[int],
        direction: ScanDirection,
        at: datetime,
        client_scan_id: Optional[str] = None
    ) -> ValidationResponse:
        try:
            subscription = self.resolver.resolve_subscription(uid, lock=True)
        except EntitlementNotFound as e:
            self._record_denial(e.code, device_id, direction, at, client_scan_id=client_scan_id)
            self.db.commit()
            return self._error(e.code, e.message, details={"uid": uid})

        plan = subscription.plan

        last_entry = self.ledger.nearest_granted_entry(
            subscription.id, at, max(self.replay_window, self.passback_window)
        )
        if last_entry is not None:
            elapsed = abs((at - to_naive_utc(last_entry.scanned_at)).total_seconds())

            # Hardware double-fire: cheap, distinct and never logged
            if elapsed < self.replay_window:
                self.db.rollback()
                return self._error(
                    AccessCode.SCAN_TOO_FAST,
                    "Badge scanned too quickly, please wait",
                    wait_seconds=max(1, math.ceil(self.replay_window - elapsed))
                )

            if not plan.allow_multi_passenger and elapsed < self.passback_window:
                wait_seconds = max(1, math.ceil(self.passback_window - elapsed))
                response = self._error(
                    AccessCode.ANTI_PASSBACK,
                    f"Badge already used, retry in {wait_seconds} seconds",
                    details={"last_entry_at": format_datetime(to_naive_utc(last_entry.scanned_at))},
                    wait_seconds=wait_seconds
                )
                return self._deny_badge(response, subscription, device_id, direction, at, client_scan_id,
                                        reason=f"{AccessCode.ANTI_PASSBACK.value} (wait {wait_seconds}s)")

        today = at.date()
        if not subscription.is_active(today):
            response = self._error(
                AccessCode.BADGE_INACTIVE,
                "Subscription inactive or expired",
                details={
                    "status": subscription.effective_status(today),
                    "expires_at": subscription.end_date.strftime("%d/%m/%Y"),
                    "owner_name": subscription.user.name if subscription.user else None
                }
            )
            return self._deny_badge(response, subscription, device_id, direction, at, client_scan_id)

        if subscription.is_counted:
            # Check and decrement in one statement so concurrent taps cannot overspend
            debited = (
                self.db.query(Subscription)
                .filter(Subscription.id == subscription.id, Subscription.voyage_credits_remaining > 0)
                .update(
                    {Subscription.voyage_credits_remaining: Subscription.voyage_credits_remaining - 1},
                    synchronize_session=False
                )
            )
            if debited == 0:
                response = self._error(
                    AccessCode.INSUFFICIENT_CREDITS,
                    "No voyage credits remaining",
                    details={
                        "voyage_credits_initial": subscription.voyage_credits_initial,
                        "owner_name": subscription.user.name if subscription.user else None
                    }
                )
                return self._deny_badge(response, subscription, device_id, direction, at, client_scan_id)

        self.ledger.record(
            subscription_id=subscription.id,
            device_id=device_id,
            direction=direction,
            result=AccessResult.GRANTED,
            scanned_at=at,
            client_scan_id=client_scan_id
        )
        self.db.commit()
        self.db.refresh(subscription)

        logger.info(f"Access granted for subscription {subscription.id} on device {device_id}")

        return ValidationResponse(
            status=ScanStatus.SUCCESS,
            code=AccessCode.ACCESS_GRANTED,
            message="Access granted",
            badge_info=self._badge_info(subscription)
        )

    def _deny_badge(
        self,
        response: ValidationResponse,
        subscription: Subscription,
        device_id: Optional[int],
        direction: ScanDirection,
        at: datetime,
        client_scan_id: Optional[str],
        reason: Optional[str] = None
    ) -> ValidationResponse:
        self._record_denial(
            response.code, device_id, direction, at,
            subscription_id=subscription.id, client_scan_id=client_scan_id, reason=reason
        )
        self.db.commit()
        logger.info(f"Subscription {subscription.id} denied with {response.code.value} on device {device_id}")
        return response

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _record_denial(
        self,
        code: AccessCode,
        device_id: Optional[int],
        direction: ScanDirection,
        at: datetime,
        ticket_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        client_scan_id: Optional[str] = None,
        reason: Optional[str] = None
    ):
        self.ledger.record(
            ticket_id=ticket_id,
            subscription_id=subscription_id,
            device_id=device_id,
            direction=direction,
            result=AccessResult.DENIED,
            deny_reason=reason or code.value,
            scanned_at=at,
            client_scan_id=client_scan_id
        )

    def _error(
        self,
        code: AccessCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        wait_seconds: Optional[int] = None
    ) -> ValidationResponse:
        if wait_seconds is not None:
            details = {**(details or {}), "wait_seconds": wait_seconds}
        return ValidationResponse(
            status=ScanStatus.ERROR,
            code=code,
            message=message,
            details=details,
            wait_seconds=wait_seconds
        )

    def _passenger_info(self, ticket: Ticket) -> PassengerInfo:
        return PassengerInfo(
            name=ticket.passenger_name,
            type=PASSENGER_TYPE_LABELS.get(ticket.passenger_type, ticket.passenger_type.title()),
            nationality=NATIONALITY_LABELS.get(ticket.nationality_group, ticket.nationality_group.title()),
            seat=ticket.seat_number or "Not assigned"
        )

    def _trip_info(self, ticket: Ticket) -> Optional[TripInfo]:
        trip = ticket.trip
        if trip is None:
            return None
        return TripInfo(
            id=trip.id,
            route=trip.route.name,
            ship=trip.ship.name,
            departure=format_datetime(to_naive_utc(trip.departure_time))
        )

    def _badge_info(self, subscription: Subscription) -> BadgeInfo:
        plan = subscription.plan
        return BadgeInfo(
            owner_name=subscription.user.name if subscription.user else "Unknown",
            plan_name=plan.name,
            remaining_credits=subscription.voyage_credits_remaining if subscription.is_counted else "UNLIMITED",
            expires_at=subscription.end_date.strftime("%d/%m/%Y"),
            allow_multi_passenger=bool(plan.allow_multi_passenger)
        )
