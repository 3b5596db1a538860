"""
Atomic transactions for appointment writes.
"""

from booking.transactions.booking_transaction import BookingTransaction, run_in_booking_scope

__all__ = ["BookingTransaction", "run_in_booking_scope"]
