import threading
from datetime import timedelta

from src.config import settings
from src.models import AccessLog, Subscription
from src.access.scan_service import ScanValidationService
from src.access.schemas import AccessCode, AccessResult, ScanDirection, ScanStatus


def _at(ferry, seconds):
    return ferry.now + timedelta(seconds=seconds)


def _scan(scan_service, ferry, uid, seconds, direction=ScanDirection.ENTRY):
    return scan_service.validate(uid, device_id=ferry.device_id, direction=direction, scanned_at=_at(ferry, seconds))


def _subscription(db, uid):
    db.expire_all()
    return db.query(Subscription).filter_by(rfid_card_id=uid).one()


def _ledger_results(db, uid):
    subscription = _subscription(db, uid)
    rows = db.query(AccessLog).filter_by(subscription_id=subscription.id).order_by(AccessLog.scanned_at).all()
    return [(row.result, row.deny_reason) for row in rows]


def test_unlimited_badge_anti_passback_window(db, scan_service, ferry):
    first = _scan(scan_service, ferry, "RFID-1", 0)
    blocked = _scan(scan_service, ferry, "RFID-1", 60)
    again = _scan(scan_service, ferry, "RFID-1", 301)

    assert first.code == AccessCode.ACCESS_GRANTED
    assert first.badge_info.owner_name == ferry.owner_name
    assert first.badge_info.remaining_credits == "UNLIMITED"

    assert blocked.status == ScanStatus.ERROR
    assert blocked.code == AccessCode.ANTI_PASSBACK
    assert blocked.wait_seconds == 240
    assert blocked.details["wait_seconds"] == 240

    assert again.code == AccessCode.ACCESS_GRANTED


def test_anti_passback_wait_counts_down(db, scan_service, ferry):
    _scan(scan_service, ferry, "RFID-1", 0)

    response = _scan(scan_service, ferry, "RFID-1", 10)

    assert response.code == AccessCode.ANTI_PASSBACK
    assert response.wait_seconds == 290
    assert _ledger_results(db, "RFID-1") == [
        (AccessResult.GRANTED.value, None),
        (AccessResult.DENIED.value, "ANTI_PASSBACK (wait 290s)"),
    ]


def test_double_tap_is_too_fast_and_not_logged(db, scan_service, ferry):
    _scan(scan_service, ferry, "RFID-1", 0)

    response = _scan(scan_service, ferry, "RFID-1", 1)

    assert response.code == AccessCode.SCAN_TOO_FAST
    assert response.wait_seconds == 2
    assert _ledger_results(db, "RFID-1") == [(AccessResult.GRANTED.value, None)]


def test_replay_window_boundary(db, scan_service, ferry):
    _scan(scan_service, ferry, "RFID-1", 0)

    # Exactly three seconds later the tap is no longer a double fire
    response = _scan(scan_service, ferry, "RFID-1", 3)

    assert response.code == AccessCode.ANTI_PASSBACK
    assert response.wait_seconds == 297


def test_exit_scan_is_subject_to_the_windows(db, scan_service, ferry):
    _scan(scan_service, ferry, "RFID-1", 0)

    response = _scan(scan_service, ferry, "RFID-1", 30, direction=ScanDirection.EXIT)

    assert response.code == AccessCode.ANTI_PASSBACK


def test_counted_badge_debits_one_credit_per_grant(db, scan_service, ferry):
    first = _scan(scan_service, ferry, "RFID-2", 0)
    second = _scan(scan_service, ferry, "RFID-2", 400)
    exhausted = _scan(scan_service, ferry, "RFID-2", 800)

    assert first.badge_info.remaining_credits == 1
    assert second.badge_info.remaining_credits == 0
    assert exhausted.code == AccessCode.INSUFFICIENT_CREDITS
    assert exhausted.details["voyage_credits_initial"] == 2
    assert _subscription(db, "RFID-2").voyage_credits_remaining == 0


def test_denied_scans_do_not_debit(db, scan_service, ferry):
    _scan(scan_service, ferry, "RFID-2", 0)
    _scan(scan_service, ferry, "RFID-2", 1)
    _scan(scan_service, ferry, "RFID-2", 60)

    assert _subscription(db, "RFID-2").voyage_credits_remaining == 1


def test_multi_passenger_badge_skips_anti_passback(db, scan_service, ferry):
    responses = [_scan(scan_service, ferry, "RFID-3", seconds) for seconds in (0, 5, 10, 15, 20)]

    assert [r.code for r in responses] == [
        AccessCode.ACCESS_GRANTED,
        AccessCode.ACCESS_GRANTED,
        AccessCode.ACCESS_GRANTED,
        AccessCode.INSUFFICIENT_CREDITS,
        AccessCode.INSUFFICIENT_CREDITS,
    ]
    assert responses[0].badge_info.allow_multi_passenger is True

    subscription = _subscription(db, "RFID-3")
    assert subscription.voyage_credits_remaining == 0
    results = [result for result, _ in _ledger_results(db, "RFID-3")]
    assert results.count(AccessResult.GRANTED.value) == 3
    assert results.count(AccessResult.DENIED.value) == 2


def test_multi_passenger_badge_still_rejects_double_taps(db, scan_service, ferry):
    _scan(scan_service, ferry, "RFID-3", 0)

    response = _scan(scan_service, ferry, "RFID-3", 2)

    assert response.code == AccessCode.SCAN_TOO_FAST
    assert _subscription(db, "RFID-3").voyage_credits_remaining == 2


def test_blocked_badge(db, scan_service, ferry):
    response = _scan(scan_service, ferry, "RFID-BLOCKED", 0)

    assert response.code == AccessCode.BADGE_INACTIVE
    assert response.details["status"] == "blocked"
    assert response.details["owner_name"] == ferry.owner_name
    assert _ledger_results(db, "RFID-BLOCKED") == [(AccessResult.DENIED.value, "BADGE_INACTIVE")]


def test_badge_past_end_date_is_expired(db, scan_service, ferry):
    response = _scan(scan_service, ferry, "RFID-EXPIRED", 0)

    assert response.code == AccessCode.BADGE_INACTIVE
    assert response.details["status"] == "expired"
    assert response.details["expires_at"] == (ferry.now.date() - timedelta(days=1)).strftime("%d/%m/%Y")


def test_badge_not_yet_started(db, scan_service, ferry):
    response = _scan(scan_service, ferry, "RFID-FUTURE", 0)

    assert response.code == AccessCode.BADGE_INACTIVE


def test_unknown_badge(db, scan_service, ferry):
    response = _scan(scan_service, ferry, "RFID-404", 0)

    assert response.code == AccessCode.BADGE_NOT_FOUND
    assert response.details == {"uid": "RFID-404"}
    db.expire_all()
    entry = db.query(AccessLog).filter_by(deny_reason="BADGE_NOT_FOUND").one()
    assert entry.subscription_id is None


def test_badge_uid_is_trimmed(db, scan_service, ferry):
    response = _scan(scan_service, ferry, "  RFID-1\n", 0)

    assert response.code == AccessCode.ACCESS_GRANTED


def test_passback_window_is_configurable(db, signer, ferry):
    from src.config import settings
    from src.access.scan_service import ScanValidationService

    service = ScanValidationService(db, signer, settings.model_copy(update={"ANTI_PASSBACK_WINDOW_SECONDS": 30}))
    _scan(service, ferry, "RFID-1", 0)

    assert _scan(service, ferry, "RFID-1", 20).wait_seconds == 10
    assert _scan(service, ferry, "RFID-1", 31).code == AccessCode.ACCESS_GRANTED


def test_concurrent_taps_spend_the_last_credit_once(session_factory, signer, ferry):
    results = []
    barrier = threading.Barrier(5)

    def tap():
        session = session_factory()
        try:
            service = ScanValidationService(session, signer, settings)
            barrier.wait()
            results.append(service.validate("RFID-LAST", device_id=ferry.device_id).code)
        finally:
            session.close()

    threads = [threading.Thread(target=tap) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(AccessCode.ACCESS_GRANTED) == 1
    assert set(results) <= {AccessCode.ACCESS_GRANTED, AccessCode.INSUFFICIENT_CREDITS, AccessCode.SCAN_TOO_FAST}

    session = session_factory()
    try:
        subscription = session.query(Subscription).filter_by(rfid_card_id="RFID-LAST").one()
        granted = session.query(AccessLog).filter_by(
            subscription_id=subscription.id, result=AccessResult.GRANTED.value
        ).count()
        assert granted == 1
        assert subscription.voyage_credits_remaining == 0
    finally:
        session.close()
