"""
seatsync - resilient data-access layer for seat reservations.
"""

__version__ = "0.1.0"
