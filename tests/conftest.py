import os
import tempfile
from datetime import timedelta
from types import SimpleNamespace

import pytest

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("TICKET_SIGNING_SECRET", "test-ticket-signing-secret")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(tempfile.gettempdir(), 'ferry_access_app.db')}"

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from src.config import settings
from src.database import Base, get_db
from src.main import app
from src.models import (
    User, Role, UserHasRole, Port, Ship, SeaRoute, Trip, Booking, Ticket,
    SubscriptionPlan, Subscription, AccessDevice
)
from src.access.codec import TicketCodeSigner
from src.access.scan_service import ScanValidationService
from src.access.timeutils import utc_now
from src.auth.utils import create_access_token


DEVICE_TOKEN = "device-token-dkr-01"


@pytest.fixture
def session_factory(tmp_path):
    db_path = tmp_path / "access.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30}
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def signer():
    return TicketCodeSigner(settings.TICKET_SIGNING_SECRET)


@pytest.fixture
def scan_service(db, signer):
    return ScanValidationService(db, signer, settings)


@pytest.fixture
def ferry(db, signer):
    """One port pair, three trips, a booking, tickets in every state, badges and a gate"""
    now = utc_now()
    today = now.date()

    supervisor_role = Role(name="supervisor")
    agent_role = Role(name="agent")
    supervisor = User(name="Awa Ndiaye", email="supervisor@ferry.test")
    agent = User(name="Moussa Diop", email="agent@ferry.test")
    owner = User(name="Fatou Sarr", email="fatou@example.com")
    db.add_all([supervisor_role, agent_role, supervisor, agent, owner])
    db.flush()
    db.add_all([
        UserHasRole(user_id=supervisor.id, role_id=supervisor_role.id),
        UserHasRole(user_id=agent.id, role_id=agent_role.id),
    ])

    dakar = Port(name="Dakar", code="DKR", city="Dakar")
    goree = Port(name="Gorée", code="GOR", city="Gorée")
    ship = Ship(name="Coumba Castel", capacity_pax=350)
    db.add_all([dakar, goree, ship])
    db.flush()

    route = SeaRoute(departure_port_id=dakar.id, arrival_port_id=goree.id, duration_minutes=20)
    db.add(route)
    db.flush()

    db.add_all([
        Trip(id="TR1", route_id=route.id, ship_id=ship.id, departure_time=now + timedelta(hours=1)),
        Trip(id="TR2", route_id=route.id, ship_id=ship.id, departure_time=now + timedelta(hours=3)),
        Trip(id="TR-GONE", route_id=route.id, ship_id=ship.id, departure_time=now - timedelta(hours=3)),
    ])
    booking = Booking(id="B1", user_id=owner.id, booking_reference="REF123", total_amount=6000)
    db.add(booking)
    db.flush()

    db.add_all([
        Ticket(id="T1", booking_id="B1", trip_id="TR1", return_trip_id="TR2", passenger_name="Fatou Sarr",
               passenger_type="adult", nationality_group="national", seat_number="12A"),
        Ticket(id="T2", booking_id="B1", trip_id="TR1", passenger_name="Ibrahima Sarr",
               passenger_type="child", status="cancelled"),
        Ticket(id="T3", booking_id="B1", trip_id="TR1", passenger_name="Claire Martin",
               nationality_group="hors_afrique", status="refunded"),
        Ticket(id="T4", booking_id="B1", trip_id="TR-GONE", passenger_name="Late Passenger"),
    ])

    unlimited = SubscriptionPlan(name="Pass Résident Illimité", duration_days=30,
                                 credit_type=SubscriptionPlan.TYPE_UNLIMITED)
    counted = SubscriptionPlan(name="Pass 2 voyages", duration_days=30,
                               credit_type=SubscriptionPlan.TYPE_COUNTED, voyage_credits=2)
    family = SubscriptionPlan(name="Pass Famille", duration_days=30,
                              credit_type=SubscriptionPlan.TYPE_COUNTED, voyage_credits=3,
                              allow_multi_passenger=True)
    db.add_all([unlimited, counted, family])
    db.flush()

    def subscription(uid, plan, credits=0, status="active", start=None, end=None):
        return Subscription(
            user_id=owner.id,
            plan_id=plan.id,
            rfid_card_id=uid,
            start_date=start or today - timedelta(days=10),
            end_date=end or today + timedelta(days=20),
            status=status,
            voyage_credits_initial=credits,
            voyage_credits_remaining=credits
        )

    db.add_all([
        subscription("RFID-1", unlimited),
        subscription("RFID-2", counted, credits=2),
        subscription("RFID-3", family, credits=3),
        subscription("RFID-LAST", counted, credits=1),
        subscription("RFID-BLOCKED", unlimited, status="blocked"),
        subscription("RFID-EXPIRED", unlimited, end=today - timedelta(days=1)),
        subscription("RFID-FUTURE", unlimited, start=today + timedelta(days=2)),
    ])

    device = AccessDevice(port_id=dakar.id, name="Tourniquet Dakar 1", location="Quai 1",
                          type="tripod", device_identifier="DKR-TRIPOD-01", api_token=DEVICE_TOKEN)
    db.add(device)
    db.commit()

    return SimpleNamespace(
        now=now,
        device_id=device.id,
        device_token=DEVICE_TOKEN,
        supervisor_id=supervisor.id,
        agent_id=agent.id,
        owner_name=owner.name,
        ticket_code=signer.encode("T1", "REF123", "TR1", "TR2"),
        cancelled_code=signer.encode("T2", "REF123", "TR1"),
        refunded_code=signer.encode("T3", "REF123", "TR1"),
        departed_code=signer.encode("T4", "REF123", "TR-GONE"),
    )


@pytest.fixture
def api_client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def agent_headers(ferry):
    token = create_access_token({"sub": "agent@ferry.test", "user_id": ferry.agent_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def supervisor_headers(ferry):
    token = create_access_token({"sub": "supervisor@ferry.test", "user_id": ferry.supervisor_id})
    return {"Authorization": f"Bearer {token}"}
