"""
Appointment lifecycle state machine.
"""

from booking.fsm.appointment_fsm import AppointmentEvent, AppointmentStateMachine

__all__ = ["AppointmentEvent", "AppointmentStateMachine"]
