#!/usr/bin/env python3

import sys
import os
import secrets
from datetime import timedelta, date
from decimal import Decimal

# Add src to path
sys.path.append(os.path.join(os.path.dirname(__file__), 'src'))

from sqlalchemy.orm import sessionmaker
from src.database import engine, Base
from src.models import (
    User, Role, UserHasRole, Port, Ship, SeaRoute, Trip, Booking, Ticket,
    SubscriptionPlan, Subscription, AccessDevice, AccessLog
)
from src.access.dependencies import get_ticket_signer
from src.auth.utils import create_access_token
from src.access.timeutils import utc_now

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def create_seed_data():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    signer = get_ticket_signer()

    try:
        print("🚀 Creating seed data for Ferry Access Control...")

        # Clear existing data (in reverse dependency order)
        print("Clearing existing data...")
        db.query(AccessLog).delete()
        db.query(AccessDevice).delete()
        db.query(Subscription).delete()
        db.query(SubscriptionPlan).delete()
        db.query(Ticket).delete()
        db.query(Booking).delete()
        db.query(Trip).delete()
        db.query(SeaRoute).delete()
        db.query(Ship).delete()
        db.query(Port).delete()
        db.query(UserHasRole).delete()
        db.query(Role).delete()
        db.query(User).delete()

        # 1. Roles and staff
        print("Creating roles and staff...")
        roles = {name: Role(name=name) for name in ["admin", "supervisor", "agent", "client"]}
        db.add_all(roles.values())
        db.flush()

        supervisor = User(name="Awa Ndiaye", email="supervisor@ferry.local")
        agent = User(name="Moussa Diop", email="agent@ferry.local")
        client = User(name="Fatou Sarr", email="fatou.sarr@example.com")
        db.add_all([supervisor, agent, client])
        db.flush()
        db.add_all([
            UserHasRole(user_id=supervisor.id, role_id=roles["supervisor"].id),
            UserHasRole(user_id=agent.id, role_id=roles["agent"].id),
            UserHasRole(user_id=client.id, role_id=roles["client"].id),
        ])

        # 2. Ports, ships, routes
        print("Creating ports, ships and routes...")
        dakar = Port(name="Dakar", code="DKR", city="Dakar")
        goree = Port(name="Gorée", code="GOR", city="Gorée")
        ziguinchor = Port(name="Ziguinchor", code="ZIG", city="Ziguinchor")
        db.add_all([dakar, goree, ziguinchor])
        db.flush()

        ships = [
            Ship(name="Coumba Castel", capacity_pax=350),
            Ship(name="Aguene", capacity_pax=500),
        ]
        db.add_all(ships)
        db.flush()

        routes = [
            SeaRoute(departure_port_id=dakar.id, arrival_port_id=goree.id, duration_minutes=20),
            SeaRoute(departure_port_id=goree.id, arrival_port_id=dakar.id, duration_minutes=20),
            SeaRoute(departure_port_id=dakar.id, arrival_port_id=ziguinchor.id, duration_minutes=900),
        ]
        db.add_all(routes)
        db.flush()

        # 3. Today's trips
        print("Creating trips...")
        now = utc_now().replace(second=0, microsecond=0)
        trips = []
        for hour_offset in range(0, 8, 2):
            departure = now + timedelta(hours=hour_offset)
            trips.append(Trip(
                route_id=routes[0].id,
                ship_id=ships[0].id,
                departure_time=departure,
                arrival_time=departure + timedelta(minutes=20)
            ))
            trips.append(Trip(
                route_id=routes[1].id,
                ship_id=ships[0].id,
                departure_time=departure + timedelta(hours=1),
                arrival_time=departure + timedelta(hours=1, minutes=20)
            ))
        db.add_all(trips)
        db.flush()

        # 4. A booking with outbound/return tickets
        print("Creating bookings and tickets...")
        booking = Booking(user_id=client.id, booking_reference="MAR-" + secrets.token_hex(3).upper(), total_amount=Decimal("10400.00"))
        db.add(booking)
        db.flush()

        passengers = [("Fatou Sarr", "adult", "national"), ("Ibrahima Sarr", "child", "national"), ("Claire Martin", "adult", "hors_afrique")]
        tickets = []
        for name, passenger_type, nationality in passengers:
            ticket = Ticket(
                booking_id=booking.id,
                trip_id=trips[0].id,
                return_trip_id=trips[1].id,
                passenger_name=name,
                passenger_type=passenger_type,
                nationality_group=nationality,
                price_paid=Decimal("5200.00") if nationality == "hors_afrique" else Decimal("1500.00")
            )
            db.add(ticket)
            db.flush()
            ticket.qr_code_data = signer.encode(ticket.id, booking.booking_reference, ticket.trip_id, ticket.return_trip_id)
            tickets.append(ticket)

        # 5. Subscription plans and badges
        print("Creating subscription plans and badges...")
        plans = [
            SubscriptionPlan(name="Pass Gorée 20 voyages", price=Decimal("25000.00"), duration_days=90,
                             credit_type=SubscriptionPlan.TYPE_COUNTED, voyage_credits=20),
            SubscriptionPlan(name="Pass Résident Illimité", price=Decimal("40000.00"), duration_days=30,
                             credit_type=SubscriptionPlan.TYPE_UNLIMITED),
            SubscriptionPlan(name="Pass Famille", price=Decimal("60000.00"), duration_days=30,
                             credit_type=SubscriptionPlan.TYPE_UNLIMITED, allow_multi_passenger=True),
        ]
        db.add_all(plans)
        db.flush()

        subscriptions = []
        for index, plan in enumerate(plans, start=1):
            credits = plan.voyage_credits if plan.credit_type == SubscriptionPlan.TYPE_COUNTED else 0
            subscriptions.append(Subscription(
                user_id=client.id,
                plan_id=plan.id,
                rfid_card_id=f"RFID-{index:04d}",
                start_date=date.today(),
                end_date=date.today() + timedelta(days=plan.duration_days),
                status="active",
                voyage_credits_initial=credits,
                voyage_credits_remaining=credits
            ))
        db.add_all(subscriptions)

        # 6. Access devices
        print("Creating access devices...")
        devices = [
            AccessDevice(port_id=dakar.id, name="Tourniquet Dakar 1", location="Gare maritime - Quai 1",
                         type="tripod", device_identifier="DKR-TRIPOD-01", api_token=secrets.token_hex(24)),
            AccessDevice(port_id=dakar.id, name="PDA Agent Dakar", location="Gare maritime - Embarquement",
                         type="pda", device_identifier="DKR-PDA-01", api_token=secrets.token_hex(24)),
            AccessDevice(port_id=goree.id, name="Tourniquet Gorée", location="Débarcadère",
                         type="tripod", device_identifier="GOR-TRIPOD-01", api_token=secrets.token_hex(24)),
        ]
        db.add_all(devices)

        # Commit all changes
        db.commit()
        print("✅ Successfully created seed data for Ferry Access Control!")
        print(f"Created:")
        print(f"  - {len(roles)} roles, 3 users")
        print(f"  - 3 ports, {len(ships)} ships, {len(routes)} routes")
        print(f"  - {len(trips)} trips")
        print(f"  - 1 booking ({booking.booking_reference}) with {len(tickets)} tickets")
        print(f"  - {len(plans)} subscription plans, {len(subscriptions)} badges")
        print(f"  - {len(devices)} access devices")
        print()
        for ticket in tickets:
            print(f"  QR {ticket.passenger_name}: {ticket.qr_code_data}")
        for device in devices:
            print(f"  Device {device.device_identifier} token: {device.api_token}")
        print(f"  Supervisor token: {create_access_token({'sub': supervisor.email, 'user_id': supervisor.id})}")
        print(f"  Agent token: {create_access_token({'sub': agent.email, 'user_id': agent.id})}")

    except Exception as e:
        print(f"❌ Error creating seed data: {e}")
        db.rollback()
        raise
    finally:
        db.close()

if __name__ == "__main__":
    create_seed_data()
