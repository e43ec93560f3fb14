"""Appointment record store and calendar sync core."""
