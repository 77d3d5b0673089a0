from sqlalchemy.orm import Session, joinedload
from typing import List

from src.models import Ticket, Trip, SeaRoute, Subscription
from src.access.schemas import AccessCode, ParsedTicketCode

class EntitlementNotFound(Exception):
    """Raised when a verified credential has no backing record"""
    code = AccessCode.TICKET_NOT_FOUND
    message = "Entitlement not found"

    def __init__(self, key: str):
        super().__init__(f"{self.message}: {key}")
        self.key = key

class TicketNotFound(EntitlementNotFound):
    code = AccessCode.TICKET_NOT_FOUND
    message = "Ticket not found"

class BadgeNotFound(EntitlementNotFound):
    code = AccessCode.BADGE_NOT_FOUND
    message = "Badge not recognised or not associated with a subscription"

class EntitlementResolver:
    """Loads the ticket or subscription a credential points to (read-only)"""

    def __init__(self, db: Session):
        self.db = db

    def resolve_ticket(self, parsed: ParsedTicketCode) -> Ticket:
        return self.get_ticket(parsed.ticket_id)

    def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = (
            self.db.query(Ticket)
            .options(
                joinedload(Ticket.booking),
                joinedload(Ticket.trip).joinedload(Trip.ship),
                joinedload(Ticket.trip).joinedload(Trip.route).joinedload(SeaRoute.departure_port),
                joinedload(Ticket.trip).joinedload(Trip.route).joinedload(SeaRoute.arrival_port),
            )
            .filter(Ticket.id == ticket_id)
            .first()
        )
        if not ticket:
            raise TicketNotFound(ticket_id)
        return ticket

    def resolve_subscription(self, uid: str, lock: bool = False) -> Subscription:
        """Find the subscription currently holding an RFID UID.

        With ``lock`` the row is selected FOR UPDATE so that concurrent taps of
        the same badge are serialised until the caller commits.
        """
        query = self.db.query(Subscription).filter(Subscription.rfid_card_id == uid.strip())
        if lock:
            query = query.with_for_update()
        subscription = query.first()
        if not subscription:
            raise BadgeNotFound(uid)
        return subscription

    def trip_tickets(self, trip_id: str) -> List[Ticket]:
        """All tickets sold for a trip, with their booking"""
        return (
            self.db.query(Ticket)
            .options(joinedload(Ticket.booking))
            .filter(Ticket.trip_id == trip_id)
            .order_by(Ticket.passenger_name)
            .all()
        )
