"""Pydantic command and result schemas for the booking core."""
