"""FastAPI dependencies."""

from booking.factory import build_orchestrator
from booking.orchestrator import BookingOrchestrator


def get_orchestrator() -> BookingOrchestrator:
    """Process-wide orchestrator; overridden in tests via app.dependency_overrides."""
    return build_orchestrator()
