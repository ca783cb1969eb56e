"""Modelos SQLAlchemy del motor de tickets y check-in"""
from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, ForeignKey, Numeric, Text, JSON,
    UniqueConstraint, CheckConstraint, Index, Uuid, text
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from shared.database.connection import Base


# Estados de registro
REGISTRATION_PENDING_PAYMENT = "pending_payment"
REGISTRATION_CONFIRMED = "confirmed"
REGISTRATION_FAILED = "failed"  # Lo asigna la conciliación externa de pagos vencidos; se reutiliza como cancelled
REGISTRATION_CANCELLED = "cancelled"

# Estados de orden de pago
ORDER_CREATED = "created"
ORDER_VERIFIED = "verified"
ORDER_FAILED = "failed"

# Origen del check-in
CHECKIN_VIA_QR = "qr"
CHECKIN_VIA_MANUAL = "manual"


class User(Base):
    """Perfil de usuario (asistente, organizador u operador). La identidad la gestiona otro servicio."""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    gender = Column(String, nullable=True)  # Se usa para eventos solo mujeres
    profile_image = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relaciones
    registrations = relationship("Registration", back_populates="attendee")


class Event(Base):
    __tablename__ = "events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organizer_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    starts_at = Column(DateTime(timezone=True), nullable=True)
    location_text = Column(String, nullable=True)
    is_women_only = Column(Boolean, nullable=False, default=False)
    guest_list_visible = Column(Boolean, nullable=False, default=False)
    # Contador para numerar tickets; solo se incrementa con UPDATE atómico
    ticket_sequence = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relaciones
    organizer = relationship("User", foreign_keys=[organizer_id])
    passes = relationship("Pass", back_populates="event")
    operators = relationship("EventOperator", back_populates="event")
    tickets = relationship("Ticket", back_populates="event")


class EventOperator(Base):
    """Operador delegado por el organizador para escanear / hacer check-in"""
    __tablename__ = "event_operators"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relaciones
    event = relationship("Event", back_populates="operators")

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_operator"),
    )


class Pass(Base):
    """Tipo de entrada de un evento. price = 0 es gratis."""
    __tablename__ = "passes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    capacity = Column(Integer, nullable=True)  # NULL = sin límite
    reserved_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relaciones
    event = relationship("Event", back_populates="passes")

    __table_args__ = (
        CheckConstraint("reserved_count >= 0", name="check_pass_reserved_non_negative"),
    )


class Registration(Base):
    __tablename__ = "registrations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False)
    attendee_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    pass_id = Column(Uuid, ForeignKey("passes.id"), nullable=True)
    status = Column(String, nullable=False, default=REGISTRATION_PENDING_PAYMENT)  # pending_payment, confirmed, failed, cancelled
    price_paid = Column(Numeric(12, 2), nullable=False, default=0)
    message = Column(Text, nullable=True)
    survey = Column(JSON, nullable=True)  # Respuestas libres: age_range, gender, running_experience, ...
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relaciones
    attendee = relationship("User", back_populates="registrations")
    event = relationship("Event")
    ticket_pass = relationship("Pass")
    ticket = relationship("Ticket", back_populates="registration", uselist=False)
    payment_orders = relationship("PaymentOrder", back_populates="registration")

    # created_at / updated_at se leen tras el INSERT sin lazy load
    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        # Un registro por asistente y evento; los reintentos reutilizan la fila
        UniqueConstraint("event_id", "attendee_id", name="uq_registration_event_attendee"),
        CheckConstraint(
            "status IN ('pending_payment', 'confirmed', 'failed', 'cancelled')",
            name="check_registration_status"
        ),
    )


class PaymentOrder(Base):
    __tablename__ = "payment_orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    registration_id = Column(Uuid, ForeignKey("registrations.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, nullable=False)
    # ID de la orden en la pasarela; NULL mientras la llamada a la pasarela está en curso
    order_ref = Column(String, unique=True, nullable=True, index=True)
    payment_id = Column(String, nullable=True)
    status = Column(String, nullable=False, default=ORDER_CREATED)  # created, verified, failed
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    # Relaciones
    registration = relationship("Registration", back_populates="payment_orders")

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        CheckConstraint("status IN ('created', 'verified', 'failed')", name="check_payment_order_status"),
        # A lo sumo una orden abierta por registro
        Index(
            "uq_payment_order_open_per_registration",
            "registration_id",
            unique=True,
            sqlite_where=text("status = 'created'"),
            postgresql_where=text("status = 'created'"),
        ),
    )


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    registration_id = Column(Uuid, ForeignKey("registrations.id"), nullable=False, unique=True)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False)
    attendee_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    pass_id = Column(Uuid, ForeignKey("passes.id"), nullable=True)
    ticket_number = Column(String, nullable=False)
    scan_code = Column(String, unique=True, index=True, nullable=False)
    issued_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Estado de check-in (solo lo modifica CheckInService)
    checked_in = Column(Boolean, nullable=False, default=False)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    checked_in_via = Column(String, nullable=True)  # qr, manual
    checked_in_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    checked_out_at = Column(DateTime(timezone=True), nullable=True)

    # Relaciones
    registration = relationship("Registration", back_populates="ticket")
    event = relationship("Event", back_populates="tickets")
    attendee = relationship("User", foreign_keys=[attendee_id])

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        UniqueConstraint("event_id", "ticket_number", name="uq_ticket_event_number"),
        Index("ix_tickets_event_checked_in", "event_id", "checked_in"),
        CheckConstraint(
            "(checked_in AND checked_in_at IS NOT NULL AND checked_in_via IS NOT NULL)"
            " OR (NOT checked_in AND checked_in_at IS NULL AND checked_in_via IS NULL)",
            name="check_ticket_checkin_state"
        ),
    )


class CheckInLog(Base):
    """Auditoría de cada transición de check-in / check-out"""
    __tablename__ = "checkin_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id = Column(Uuid, ForeignKey("tickets.id"), nullable=False, index=True)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False)
    operator_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    action = Column(String, nullable=False)  # checkin, checkout
    via = Column(String, nullable=False)  # qr, manual
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
