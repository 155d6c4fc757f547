"""Reservation payment lifecycle services."""
