"""
Booking services module.

Services:
- availability_service: Batched calendar load + slot generation per branch day
- branch_service: Branch resolution and main-branch maintenance
- break_time_service: Branch break registry with overlap validation
- calendar_service: Professional working hours
- client_service: Client identity resolution
- conflict_detector: Half-open interval overlap
- slot_generator: Pure slot and occupancy computation
"""

from booking.services.availability_service import AvailabilityService, load_day_context
from booking.services.branch_service import BranchService
from booking.services.break_time_service import BreakTimeService
from booking.services.calendar_service import CalendarService
from booking.services.conflict_detector import TimeInterval, overlaps
from booking.services.slot_generator import Slot, generate_slots

__all__ = [
    "AvailabilityService",
    "BranchService",
    "BreakTimeService",
    "CalendarService",
    "Slot",
    "TimeInterval",
    "generate_slots",
    "load_day_context",
    "overlaps",
]
