"""
SQLAlchemy ORM models for the booking engine.

This module defines the core tables:
- businesses: Tenants (salons, clinics, studios) with booking configuration
- branches: Physical locations of a business (exactly one active main branch)
- professionals: Staff members attached to a single branch
- services: Bookable services with duration and base price
- branch_services: Per-branch scoping and price overrides for non-global services
- working_hours: Weekly working window per professional
- break_times: Weekly break intervals per branch
- clients: End customers of a business
- appointments: Bookings with lifecycle status

All models use:
- UUID primary keys (auto-generated)
- TIMESTAMP WITH TIME ZONE for instants, TIME for branch-local times of day
- Partial indexes for "one active row" invariants
"""

from datetime import UTC, datetime, time
from decimal import Decimal
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    text,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

DEFAULT_TIMEZONE = "America/Argentina/Buenos_Aires"


def utc_now() -> datetime:
    return datetime.now(UTC)


# ============================================================================
# Base Class
# ============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# ============================================================================
# Enums
# ============================================================================


class AppointmentStatus(str, PyEnum):
    """Appointment lifecycle status."""

    PENDING_PAYMENT = "pending_payment"  # Esperando pago online
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"

    def __str__(self) -> str:
        return self.value


# Statuses that occupy the professional's time
ACTIVE_STATUSES = (AppointmentStatus.PENDING_PAYMENT, AppointmentStatus.CONFIRMED)


class PaymentMethod(str, PyEnum):
    """How the client pays for the appointment."""

    LOCAL = "local"
    ONLINE = "online"


# ============================================================================
# Tenant Models
# ============================================================================


class Business(Base):
    """
    Business model - Tenant owning branches, staff, services and clients.

    slot_granularity_minutes is the discovery step used when listing
    availability. It is independent of service durations.
    """

    __tablename__ = "businesses"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    timezone: Mapped[str] = mapped_column(
        String(64), default=DEFAULT_TIMEZONE, nullable=False
    )
    slot_granularity_minutes: Mapped[int] = mapped_column(
        Integer, default=30, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "slot_granularity_minutes > 0", name="check_granularity_positive"
        ),
    )

    def __repr__(self) -> str:
        return f"<Business(id={self.id}, slug='{self.slug}')>"


class Branch(Base):
    """
    Branch model - Physical location of a business.

    At most one active branch per business carries is_main. Operations that
    omit a branch fall back to the main branch.
    """

    __tablename__ = "branches"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    business_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    timezone: Mapped[str] = mapped_column(
        String(64), default=DEFAULT_TIMEZONE, nullable=False
    )
    is_main: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        Index(
            "uq_branches_one_main_per_business",
            "business_id",
            unique=True,
            postgresql_where=text("is_main = true AND is_active = true"),
        ),
        Index("uq_branches_business_slug", "business_id", "slug", unique=True),
    )

    def __repr__(self) -> str:
        return f"<Branch(id={self.id}, name='{self.name}', is_main={self.is_main})>"


class Professional(Base):
    """Professional model - Staff member who performs services at one branch."""

    __tablename__ = "professionals"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    business_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    branch_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("branches.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index(
            "idx_professionals_branch_active",
            "branch_id",
            postgresql_where=text("is_active = true"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Professional(id={self.id}, name='{self.name}')>"


class Service(Base):
    """
    Service model - Bookable service with duration and base price.

    Global services are offered at every branch. Non-global services must be
    scoped to a branch through BranchService.
    """

    __tablename__ = "services"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    business_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0"), nullable=False
    )
    is_global: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="check_duration_positive"),
        CheckConstraint("price >= 0", name="check_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name='{self.name}', duration={self.duration_minutes}min)>"


class BranchService(Base):
    """BranchService model - Offers a service at a branch, optionally with its own price."""

    __tablename__ = "branch_services"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    branch_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("branches.id", ondelete="CASCADE"),
        nullable=False,
    )
    service_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("services.id", ondelete="CASCADE"),
        nullable=False,
    )
    price_override: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("uq_branch_services_branch_service", "branch_id", "service_id", unique=True),
    )

    def __repr__(self) -> str:
        return f"<BranchService(branch_id={self.branch_id}, service_id={self.service_id})>"


# ============================================================================
# Calendar Models
# ============================================================================


class WorkingHours(Base):
    """
    WorkingHours model - Weekly working window of a professional.

    day_of_week counts from Sunday: 0=Sunday, 1=Monday ... 6=Saturday.
    Times are branch-local. At most one active row per (professional, weekday);
    replacing hours deactivates the previous row.
    """

    __tablename__ = "working_hours"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    professional_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("professionals.id", ondelete="CASCADE"),
        nullable=False,
    )
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="valid_wh_day_of_week"),
        CheckConstraint("end_time > start_time", name="check_wh_end_after_start"),
        Index(
            "uq_working_hours_active_day",
            "professional_id",
            "day_of_week",
            unique=True,
            postgresql_where=text("is_active = true"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<WorkingHours(professional_id={self.professional_id}, day={self.day_of_week}, "
            f"{self.start_time}-{self.end_time})>"
        )


class BreakTime(Base):
    """
    BreakTime model - Recurring weekly break at a branch.

    No two active breaks of the same branch and weekday may overlap. The
    constraint is validated by the break time service on create/update.
    """

    __tablename__ = "break_times"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    branch_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("branches.id", ondelete="CASCADE"),
        nullable=False,
    )
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    name: Mapped[str] = mapped_column(String(100), default="Descanso", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="valid_break_day_of_week"),
        CheckConstraint("end_time > start_time", name="check_break_end_after_start"),
        Index("idx_break_times_branch_day", "branch_id", "day_of_week"),
    )

    def __repr__(self) -> str:
        return f"<BreakTime(id={self.id}, name='{self.name}', day={self.day_of_week})>"


# ============================================================================
# Booking Models
# ============================================================================


class Client(Base):
    """Client model - End customer of a business, identified by email or phone."""

    __tablename__ = "clients"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    business_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "email IS NOT NULL OR phone IS NOT NULL", name="check_client_contact"
        ),
        Index("idx_clients_business_email", "business_id", "email"),
        Index("idx_clients_business_phone", "business_id", "phone"),
    )

    def __repr__(self) -> str:
        return f"<Client(id={self.id}, name='{self.name}')>"


class Appointment(Base):
    """
    Appointment model - Booking of one service with one professional.

    end_time is always start_time + service duration. Two appointments with
    the same professional, overlapping [start_time, end_time) and both in an
    active status cannot coexist; the database backs this with an exclusion
    constraint (see the initial migration). Appointments are never deleted.
    """

    __tablename__ = "appointments"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )

    # Foreign keys
    business_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    branch_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("branches.id", ondelete="RESTRICT"),
        nullable=False,
    )
    client_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("clients.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    service_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("services.id", ondelete="RESTRICT"),
        nullable=False,
    )
    professional_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("professionals.id", ondelete="RESTRICT"),
        nullable=True,
    )

    # Scheduling
    start_time: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )
    end_time: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )

    # Note: values_callable stores enum .value ("pending_payment") instead of .name
    status: Mapped[AppointmentStatus] = mapped_column(
        SQLEnum(
            AppointmentStatus,
            name="appointment_status",
            create_type=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=AppointmentStatus.CONFIRMED,
        nullable=False,
        index=True,
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(
            PaymentMethod,
            name="payment_method",
            create_type=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=PaymentMethod.LOCAL,
        nullable=False,
    )
    price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0"), nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Online payment tracking
    checkout_handle: Mapped[str | None] = mapped_column(String(255), nullable=True)
    checkout_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_appointment_end_after_start"),
        # Composite index for per-professional overlap queries
        Index(
            "idx_appointments_professional_time",
            "professional_id",
            "start_time",
            "end_time",
        ),
        # Pending payment expiration sweep
        Index(
            "idx_appointments_pending_created",
            "created_at",
            postgresql_where=text("status = 'pending_payment'"),
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def __repr__(self) -> str:
        return f"<Appointment(id={self.id}, professional_id={self.professional_id}, status='{self.status.value}')>"
