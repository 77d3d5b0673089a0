from sqlalchemy.orm import Session, joinedload
from typing import List, Optional, Dict, Any
from datetime import datetime, date, timedelta

from src.models import AccessLog, Subscription
from src.access.schemas import AccessResult, ScanDirection
from src.access.timeutils import to_naive_utc

class AccessLedger:
    """Append-only record of every scan attempt.

    The ledger is both the audit trail and the input of the anti-replay and
    anti-passback rules. Rows are only ever inserted; ``record`` flushes but
    leaves the commit to the caller so that a ledger entry and the entitlement
    change it accounts for land in the same transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        *,
        direction: ScanDirection,
        result: AccessResult,
        scanned_at: datetime,
        device_id: Optional[int] = None,
        ticket_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        deny_reason: Optional[str] = None,
        client_scan_id: Optional[str] = None
    ) -> AccessLog:
        if ticket_id and subscription_id:
            raise ValueError("An access log entry references a ticket or a subscription, not both")

        entry = AccessLog(
            ticket_id=ticket_id,
            subscription_id=subscription_id,
            device_id=device_id,
            direction=ScanDirection(direction).value,
            result=AccessResult(result).value,
            deny_reason=deny_reason,
            client_scan_id=client_scan_id,
            scanned_at=to_naive_utc(scanned_at)
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def nearest_granted_entry(
        self,
        subscription_id: str,
        at: datetime,
        window_seconds: int
    ) -> Optional[AccessLog]:
        """Granted entry-direction scan closest to ``at`` within the window.

        Live scans only ever find earlier rows. Offline scans replayed at their
        original timestamp can also collide with a later grant.
        """
        at = to_naive_utc(at)
        window = timedelta(seconds=window_seconds)

        base = self.db.query(AccessLog).filter(
            AccessLog.subscription_id == subscription_id,
            AccessLog.result == AccessResult.GRANTED.value,
            AccessLog.direction == ScanDirection.ENTRY.value
        )

        previous = (
            base.filter(AccessLog.scanned_at <= at, AccessLog.scanned_at > at - window)
            .order_by(AccessLog.scanned_at.desc())
            .first()
        )
        following = (
            base.filter(AccessLog.scanned_at > at, AccessLog.scanned_at < at + window)
            .order_by(AccessLog.scanned_at.asc())
            .first()
        )

        if previous is None:
            return following
        if following is None:
            return previous
        previous_gap = at - to_naive_utc(previous.scanned_at)
        following_gap = to_naive_utc(following.scanned_at) - at
        return previous if previous_gap <= following_gap else following

    def find_by_scan_id(self, client_scan_id: str) -> Optional[AccessLog]:
        return self.db.query(AccessLog).filter(AccessLog.client_scan_id == client_scan_id).first()

    def ticket_boarding_entry(self, ticket_id: str) -> Optional[AccessLog]:
        """The granted or bypass entry that boarded a ticket, if any"""
        return (
            self.db.query(AccessLog)
            .filter(
                AccessLog.ticket_id == ticket_id,
                AccessLog.result.in_([AccessResult.GRANTED.value, AccessResult.BYPASS.value])
            )
            .order_by(AccessLog.scanned_at.asc())
            .first()
        )

    def recent(self, limit: int = 20) -> List[AccessLog]:
        return (
            self._with_relations()
            .order_by(AccessLog.scanned_at.desc())
            .limit(limit)
            .all()
        )

    def latest(self, since: Optional[datetime] = None, limit: int = 10) -> List[AccessLog]:
        """Rows scanned after ``since``, for monitoring screens that poll"""
        query = self._with_relations()
        if since is not None:
            query = query.filter(AccessLog.scanned_at > to_naive_utc(since))
        return query.order_by(AccessLog.scanned_at.desc()).limit(limit).all()

    def device_statistics(self, device_id: int, day: date) -> Dict[str, Any]:
        start = datetime.combine(day, datetime.min.time())
        end = start + timedelta(days=1)

        rows = (
            self.db.query(AccessLog.result)
            .filter(
                AccessLog.device_id == device_id,
                AccessLog.scanned_at >= start,
                AccessLog.scanned_at < end
            )
            .all()
        )

        total = len(rows)
        granted = len([r for r in rows if r.result in (AccessResult.GRANTED.value, AccessResult.BYPASS.value)])
        denied = total - granted

        return {
            "device_id": device_id,
            "date": day.isoformat(),
            "total_scans": total,
            "granted": granted,
            "denied": denied,
            "success_rate": round((granted / total) * 100, 2) if total > 0 else 0
        }

    def _with_relations(self):
        return self.db.query(AccessLog).options(
            joinedload(AccessLog.ticket),
            joinedload(AccessLog.subscription).joinedload(Subscription.user),
            joinedload(AccessLog.device)
        )

def describe_entry(entry: AccessLog) -> Dict[str, Any]:
    """Flatten a ledger row for monitoring responses"""
    passenger_name = None
    if entry.ticket is not None:
        passenger_name = entry.ticket.passenger_name
    elif entry.subscription is not None and entry.subscription.user is not None:
        passenger_name = entry.subscription.user.name

    return {
        "id": entry.id,
        "ticket_id": entry.ticket_id,
        "subscription_id": entry.subscription_id,
        "device_id": entry.device_id,
        "direction": entry.direction,
        "result": entry.result,
        "deny_reason": entry.deny_reason,
        "scanned_at": entry.scanned_at,
        "passenger_name": passenger_name,
        "device_name": entry.device.name if entry.device else None
    }
