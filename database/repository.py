"""
Repository layer for the booking engine.

BookingRepository is the only way the engine touches durable state. It is
injected into BookingOrchestrator, so tests can substitute an in-memory
implementation.

Writes that must be atomic with a conflict check run inside booking_scope():

    async with repository.booking_scope(professional_id) as unit:
        if await unit.find_conflicts(professional_id, start, end):
            raise SlotConflictError(...)
        await unit.add_appointment(appointment)
    # committed here

The PostgreSQL implementation runs the scope in a SERIALIZABLE transaction
holding a transaction-level advisory lock keyed by professional, and maps the
appointments exclusion constraint to SlotConflictError.
Break-time writes use break_time_scope(), which holds the same kind of lock
keyed by branch so the no-overlap check and the write cannot interleave.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime, time
from uuid import UUID

from sqlalchemy import or_, select, text, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from booking.errors import ConcurrentUpdateError, SlotConflictError
from database.models import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    Branch,
    BranchService,
    BreakTime,
    Business,
    Client,
    Professional,
    Service,
    WorkingHours,
)

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE codes
EXCLUSION_VIOLATION = "23P01"
SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class BookingUnit(ABC):
    """Operations available inside an atomic booking scope."""

    @abstractmethod
    async def find_conflicts(
        self,
        professional_id: UUID,
        start: datetime,
        end: datetime,
        exclude_appointment_id: UUID | None = None,
    ) -> list[Appointment]:
        """Active appointments of professional overlapping [start, end)."""

    @abstractmethod
    async def find_client(
        self, business_id: UUID, email: str | None, phone: str | None
    ) -> Client | None:
        """Client of the business matching email OR phone."""

    @abstractmethod
    async def add_client(self, client: Client) -> None: ...

    @abstractmethod
    async def add_appointment(self, appointment: Appointment) -> None: ...

    @abstractmethod
    async def get_appointment(self, appointment_id: UUID) -> Appointment | None:
        """Load an appointment locked for the rest of the scope."""

    @abstractmethod
    async def save(self, entity: Client | Appointment) -> None:
        """Persist changes made to an entity loaded or added in this scope."""


class BreakTimeUnit(ABC):
    """Break-time reads and writes serialized per branch."""

    @abstractmethod
    async def list_break_times(self, branch_id: UUID, day_of_week: int) -> list[BreakTime]:
        """Active breaks of the branch on the weekday."""

    @abstractmethod
    async def save_break_time(self, break_time: BreakTime) -> BreakTime: ...


class BookingRepository(ABC):
    """Read access and maintenance writes for the booking engine."""

    # Tenants and branches

    @abstractmethod
    async def get_business(self, business_id: UUID) -> Business | None: ...

    @abstractmethod
    async def list_active_branches(self, business_id: UUID) -> list[Branch]:
        """Active branches ordered by creation."""

    @abstractmethod
    async def get_branch(self, branch_id: UUID) -> Branch | None: ...

    @abstractmethod
    async def add_branch(self, branch: Branch) -> Branch: ...

    @abstractmethod
    async def set_main_branch(self, business_id: UUID, branch_id: UUID) -> None:
        """Flag branch_id as main and clear the flag on every other branch."""

    # Catalogue

    @abstractmethod
    async def get_service(self, service_id: UUID) -> Service | None: ...

    @abstractmethod
    async def get_branch_service(
        self, branch_id: UUID, service_id: UUID
    ) -> BranchService | None: ...

    @abstractmethod
    async def get_professional(self, professional_id: UUID) -> Professional | None: ...

    @abstractmethod
    async def list_active_professionals(self, branch_id: UUID) -> list[Professional]:
        """Active professionals of the branch ordered by (name, id)."""

    # Calendar

    @abstractmethod
    async def get_working_hours(
        self, professional_ids: list[UUID], day_of_week: int
    ) -> dict[UUID, WorkingHours]:
        """Active working hours of several professionals for one weekday."""

    @abstractmethod
    async def replace_working_hours(
        self, professional_id: UUID, day_of_week: int, start: time, end: time
    ) -> WorkingHours: ...

    @abstractmethod
    async def list_break_times(
        self, branch_id: UUID, day_of_week: int | None = None
    ) -> list[BreakTime]:
        """Active breaks of the branch ordered by (day_of_week, start_time)."""

    @abstractmethod
    async def get_break_time(self, break_time_id: UUID) -> BreakTime | None: ...

    @abstractmethod
    def break_time_scope(self, branch_id: UUID) -> AbstractAsyncContextManager[BreakTimeUnit]:
        """Atomic unit for break-time writes; one writer per branch at a time."""

    # Appointments

    @abstractmethod
    async def list_active_appointments(
        self, professional_ids: list[UUID], start: datetime, end: datetime
    ) -> list[Appointment]:
        """Active appointments of the professionals overlapping [start, end)."""

    @abstractmethod
    async def get_appointment(self, appointment_id: UUID) -> Appointment | None: ...

    @abstractmethod
    async def list_expired_pending_payments(self, cutoff: datetime) -> list[Appointment]:
        """Pending-payment appointments created before cutoff."""

    @abstractmethod
    def booking_scope(
        self, professional_id: UUID | None = None
    ) -> AbstractAsyncContextManager[BookingUnit]:
        """Atomic unit of work; serialized per professional when one is given."""


# ============================================================================
# PostgreSQL implementation
# ============================================================================


def _sqlstate(error: DBAPIError) -> str | None:
    orig = error.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return code
    return None


class SqlAlchemyBookingUnit(BookingUnit):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_conflicts(
        self,
        professional_id: UUID,
        start: datetime,
        end: datetime,
        exclude_appointment_id: UUID | None = None,
    ) -> list[Appointment]:
        stmt = (
            select(Appointment)
            .where(
                Appointment.professional_id == professional_id,
                Appointment.status.in_(ACTIVE_STATUSES),
                Appointment.start_time < end,
                Appointment.end_time > start,
            )
            .with_for_update()
        )
        if exclude_appointment_id is not None:
            stmt = stmt.where(Appointment.id != exclude_appointment_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_client(
        self, business_id: UUID, email: str | None, phone: str | None
    ) -> Client | None:
        conditions = []
        if email:
            conditions.append(Client.email == email)
        if phone:
            conditions.append(Client.phone == phone)
        if not conditions:
            return None
        stmt = (
            select(Client)
            .where(Client.business_id == business_id, or_(*conditions))
            .order_by(Client.created_at, Client.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add_client(self, client: Client) -> None:
        self.session.add(client)
        await self.session.flush()

    async def add_appointment(self, appointment: Appointment) -> None:
        self.session.add(appointment)
        await self.session.flush()

    async def get_appointment(self, appointment_id: UUID) -> Appointment | None:
        stmt = select(Appointment).where(Appointment.id == appointment_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def save(self, entity: Client | Appointment) -> None:
        # Loaded entities are tracked by the session; flush surfaces
        # constraint violations inside the scope.
        await self.session.flush()


class SqlAlchemyBreakTimeUnit(BreakTimeUnit):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_break_times(self, branch_id: UUID, day_of_week: int) -> list[BreakTime]:
        result = await self.session.execute(
            select(BreakTime)
            .where(
                BreakTime.branch_id == branch_id,
                BreakTime.day_of_week == day_of_week,
                BreakTime.is_active.is_(True),
            )
            .order_by(BreakTime.start_time)
        )
        return list(result.scalars().all())

    async def save_break_time(self, break_time: BreakTime) -> BreakTime:
        merged = await self.session.merge(break_time)
        await self.session.flush()
        return merged


class SqlAlchemyBookingRepository(BookingRepository):
    """BookingRepository backed by PostgreSQL through SQLAlchemy async sessions."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def _get(self, model, entity_id: UUID):
        async with self._session_factory() as session:
            return await session.get(model, entity_id)

    async def get_business(self, business_id: UUID) -> Business | None:
        return await self._get(Business, business_id)

    async def list_active_branches(self, business_id: UUID) -> list[Branch]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Branch)
                .where(Branch.business_id == business_id, Branch.is_active.is_(True))
                .order_by(Branch.created_at, Branch.id)
            )
            return list(result.scalars().all())

    async def get_branch(self, branch_id: UUID) -> Branch | None:
        return await self._get(Branch, branch_id)

    async def add_branch(self, branch: Branch) -> Branch:
        async with self._session_factory() as session:
            session.add(branch)
            await session.commit()
            return branch

    async def set_main_branch(self, business_id: UUID, branch_id: UUID) -> None:
        async with self._session_factory() as session:
            # Clear first so the partial unique index never sees two mains
            await session.execute(
                update(Branch)
                .where(Branch.business_id == business_id, Branch.id != branch_id)
                .values(is_main=False)
            )
            await session.execute(
                update(Branch).where(Branch.id == branch_id).values(is_main=True)
            )
            await session.commit()

    async def get_service(self, service_id: UUID) -> Service | None:
        return await self._get(Service, service_id)

    async def get_branch_service(
        self, branch_id: UUID, service_id: UUID
    ) -> BranchService | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(BranchService).where(
                    BranchService.branch_id == branch_id,
                    BranchService.service_id == service_id,
                    BranchService.is_active.is_(True),
                )
            )
            return result.scalar_one_or_none()

    async def get_professional(self, professional_id: UUID) -> Professional | None:
        return await self._get(Professional, professional_id)

    async def list_active_professionals(self, branch_id: UUID) -> list[Professional]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Professional)
                .where(Professional.branch_id == branch_id, Professional.is_active.is_(True))
                .order_by(Professional.name, Professional.id)
            )
            return list(result.scalars().all())

    async def get_working_hours(
        self, professional_ids: list[UUID], day_of_week: int
    ) -> dict[UUID, WorkingHours]:
        if not professional_ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(
                select(WorkingHours).where(
                    WorkingHours.professional_id.in_(professional_ids),
                    WorkingHours.day_of_week == day_of_week,
                    WorkingHours.is_active.is_(True),
                )
            )
            return {wh.professional_id: wh for wh in result.scalars().all()}

    async def replace_working_hours(
        self, professional_id: UUID, day_of_week: int, start: time, end: time
    ) -> WorkingHours:
        async with self._session_factory() as session:
            await session.execute(
                update(WorkingHours)
                .where(
                    WorkingHours.professional_id == professional_id,
                    WorkingHours.day_of_week == day_of_week,
                    WorkingHours.is_active.is_(True),
                )
                .values(is_active=False)
            )
            hours = WorkingHours(
                professional_id=professional_id,
                day_of_week=day_of_week,
                start_time=start,
                end_time=end,
                is_active=True,
            )
            session.add(hours)
            await session.commit()
            return hours

    async def list_break_times(
        self, branch_id: UUID, day_of_week: int | None = None
    ) -> list[BreakTime]:
        stmt = select(BreakTime).where(
            BreakTime.branch_id == branch_id, BreakTime.is_active.is_(True)
        )
        if day_of_week is not None:
            stmt = stmt.where(BreakTime.day_of_week == day_of_week)
        stmt = stmt.order_by(BreakTime.day_of_week, BreakTime.start_time)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_break_time(self, break_time_id: UUID) -> BreakTime | None:
        return await self._get(BreakTime, break_time_id)

    @asynccontextmanager
    async def break_time_scope(self, branch_id: UUID) -> AsyncIterator[BreakTimeUnit]:
        async with self._session_factory() as session:
            try:
                await session.execute(
                    text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                    {"key": f"break_times:{branch_id}"},
                )
                yield SqlAlchemyBreakTimeUnit(session)
                await session.commit()
            except BaseException:
                await session.rollback()
                raise

    async def list_active_appointments(
        self, professional_ids: list[UUID], start: datetime, end: datetime
    ) -> list[Appointment]:
        if not professional_ids:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(Appointment)
                .where(
                    Appointment.professional_id.in_(professional_ids),
                    Appointment.status.in_(ACTIVE_STATUSES),
                    Appointment.start_time < end,
                    Appointment.end_time > start,
                )
                .order_by(Appointment.start_time)
            )
            return list(result.scalars().all())

    async def get_appointment(self, appointment_id: UUID) -> Appointment | None:
        return await self._get(Appointment, appointment_id)

    async def list_expired_pending_payments(self, cutoff: datetime) -> list[Appointment]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Appointment)
                .where(
                    Appointment.status == AppointmentStatus.PENDING_PAYMENT,
                    Appointment.created_at < cutoff,
                )
                .order_by(Appointment.created_at)
            )
            return list(result.scalars().all())

    @asynccontextmanager
    async def booking_scope(
        self, professional_id: UUID | None = None
    ) -> AsyncIterator[BookingUnit]:
        async with self._session_factory() as session:
            try:
                await session.execute(text("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE"))
                if professional_id is not None:
                    await session.execute(
                        text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                        {"key": str(professional_id)},
                    )
                yield SqlAlchemyBookingUnit(session)
                await session.commit()
            except DBAPIError as e:
                await session.rollback()
                code = _sqlstate(e)
                if code == EXCLUSION_VIOLATION:
                    logger.warning(
                        "Exclusion constraint rejected overlapping appointment",
                        extra={"professional_id": str(professional_id)},
                    )
                    raise SlotConflictError(
                        "El horario ya no está disponible",
                        details={"professional_id": str(professional_id)},
                    ) from e
                if code in (SERIALIZATION_FAILURE, DEADLOCK_DETECTED):
                    logger.info(
                        f"Serialization failure in booking scope (sqlstate={code})",
                        extra={"professional_id": str(professional_id)},
                    )
                    raise ConcurrentUpdateError(str(e)) from e
                raise
            except BaseException:
                await session.rollback()
                raise
