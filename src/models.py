from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime, Date, Text, ForeignKey, Numeric, Index, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from datetime import date
import uuid
from src.database import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntegerPK = BigInteger().with_variant(Integer, "sqlite")

def _uuid() -> str:
    return str(uuid.uuid4())

# ================================
# Users & Roles
# ================================
class User(Base):
    __tablename__ = "users"

    id = Column(BigIntegerPK, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(50))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    user_roles = relationship("UserHasRole", back_populates="user")
    subscriptions = relationship("Subscription", back_populates="user")
    bookings = relationship("Booking", back_populates="user")

class Role(Base):
    __tablename__ = "roles"

    id = Column(BigIntegerPK, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    user_roles = relationship("UserHasRole", back_populates="role")

class UserHasRole(Base):
    __tablename__ = "user_has_roles"

    id = Column(BigIntegerPK, primary_key=True, index=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False)
    role_id = Column(BigInteger, ForeignKey("roles.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="user_roles")
    role = relationship("Role", back_populates="user_roles")

# ================================
# Ports / Ships / Sea Routes
# ================================
class Port(Base):
    __tablename__ = "ports"

    id = Column(BigIntegerPK, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    code = Column(String(10), unique=True, nullable=False)
    city = Column(String(255))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    access_devices = relationship("AccessDevice", back_populates="port")

class Ship(Base):
    __tablename__ = "ships"

    id = Column(BigIntegerPK, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    capacity_pax = Column(Integer, nullable=False, default=0)
    status = Column(String(50), default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    trips = relationship("Trip", back_populates="ship")

class SeaRoute(Base):
    __tablename__ = "routes"

    id = Column(BigIntegerPK, primary_key=True, index=True)
    departure_port_id = Column(BigInteger, ForeignKey("ports.id"), nullable=False)
    arrival_port_id = Column(BigInteger, ForeignKey("ports.id"), nullable=False)
    duration_minutes = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    departure_port = relationship("Port", foreign_keys=[departure_port_id])
    arrival_port = relationship("Port", foreign_keys=[arrival_port_id])
    trips = relationship("Trip", back_populates="route")

    @property
    def name(self) -> str:
        return f"{self.departure_port.name} → {self.arrival_port.name}"

# ================================
# Trips
# ================================
class Trip(Base):
    __tablename__ = "trips"

    id = Column(String(36), primary_key=True, default=_uuid)
    route_id = Column(BigInteger, ForeignKey("routes.id"), nullable=False)
    ship_id = Column(BigInteger, ForeignKey("ships.id"), nullable=False)
    departure_time = Column(DateTime(timezone=True), nullable=False, index=True)
    arrival_time = Column(DateTime(timezone=True))
    status = Column(String(50), default="scheduled")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    route = relationship("SeaRoute", back_populates="trips")
    ship = relationship("Ship", back_populates="trips")
    tickets = relationship("Ticket", back_populates="trip", foreign_keys="Ticket.trip_id")

# ================================
# Bookings & Tickets
# ================================
class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(BigInteger, ForeignKey("users.id"))
    booking_reference = Column(String(50), unique=True, nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(String(50), default="confirmed")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="bookings")
    tickets = relationship("Ticket", back_populates="booking")

class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(String(36), primary_key=True, default=_uuid)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)
    trip_id = Column(String(36), ForeignKey("trips.id"), nullable=False, index=True)
    return_trip_id = Column(String(36), ForeignKey("trips.id"))
    passenger_name = Column(String(255))
    passenger_type = Column(String(20), nullable=False, default="adult")
    nationality_group = Column(String(20), nullable=False, default="national")
    seat_number = Column(String(20))
    qr_code_data = Column(String(255), unique=True)
    # issued | valid | boarded | cancelled | refunded
    status = Column(String(20), nullable=False, default="issued", index=True)
    price_paid = Column(Numeric(10, 2), nullable=False, default=0)
    used_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    booking = relationship("Booking", back_populates="tickets")
    trip = relationship("Trip", back_populates="tickets", foreign_keys=[trip_id])
    return_trip = relationship("Trip", foreign_keys=[return_trip_id])
    access_logs = relationship("AccessLog", back_populates="ticket")

# ================================
# Subscriptions (RFID badges)
# ================================
class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    TYPE_UNLIMITED = "unlimited"
    TYPE_COUNTED = "counted"

    id = Column(BigIntegerPK, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    duration_days = Column(Integer, nullable=False)
    credit_type = Column(String(20), nullable=False, default=TYPE_COUNTED)
    voyage_credits = Column(Integer, nullable=False, default=0)
    allow_multi_passenger = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    subscriptions = relationship("Subscription", back_populates="plan")

class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint("voyage_credits_remaining >= 0", name="ck_subscriptions_credits_non_negative"),
        CheckConstraint("voyage_credits_remaining <= voyage_credits_initial", name="ck_subscriptions_credits_bounded"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(BigInteger, ForeignKey("subscription_plans.id"), nullable=False)
    rfid_card_id = Column(String(100), unique=True, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    # active | blocked | expired
    status = Column(String(20), nullable=False, default="active")
    voyage_credits_initial = Column(Integer, nullable=False, default=0)
    voyage_credits_remaining = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="subscriptions")
    plan = relationship("SubscriptionPlan", back_populates="subscriptions")
    access_logs = relationship("AccessLog", back_populates="subscription")

    @property
    def is_counted(self) -> bool:
        return self.plan.credit_type == SubscriptionPlan.TYPE_COUNTED

    def effective_status(self, today: date) -> str:
        """Stored status, or 'expired' once end_date has passed"""
        if self.status == "active" and self.end_date < today:
            return "expired"
        return self.status

    def is_active(self, today: date) -> bool:
        """Active status within the validity window. Credits are checked on debit."""
        return self.effective_status(today) == "active" and self.start_date <= today

# ================================
# Access Devices & Ledger
# ================================
class AccessDevice(Base):
    __tablename__ = "access_devices"

    id = Column(BigIntegerPK, primary_key=True, index=True)
    port_id = Column(BigInteger, ForeignKey("ports.id"))
    name = Column(String(255), nullable=False)
    location = Column(String(255), nullable=False)
    # tripod | pda | handheld
    type = Column(String(50), nullable=False)
    device_identifier = Column(String(100), unique=True, nullable=False)
    api_token = Column(String(100), unique=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    port = relationship("Port", back_populates="access_devices")
    access_logs = relationship("AccessLog", back_populates="device")

class AccessLog(Base):
    __tablename__ = "access_logs"
    __table_args__ = (
        CheckConstraint("ticket_id IS NULL OR subscription_id IS NULL", name="ck_access_logs_single_entitlement"),
        Index("ix_access_logs_passback", "subscription_id", "result", "direction", "scanned_at"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    ticket_id = Column(String(36), ForeignKey("tickets.id"), index=True)
    subscription_id = Column(String(36), ForeignKey("subscriptions.id"))
    device_id = Column(BigInteger, ForeignKey("access_devices.id"), index=True)
    # entry | exit
    direction = Column(String(10), nullable=False)
    # granted | denied | bypass
    result = Column(String(10), nullable=False)
    deny_reason = Column(Text)
    client_scan_id = Column(String(64), unique=True)
    scanned_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    ticket = relationship("Ticket", back_populates="access_logs")
    subscription = relationship("Subscription", back_populates="access_logs")
    device = relationship("AccessDevice", back_populates="access_logs")
