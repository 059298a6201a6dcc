"""HTTP layer for the social dashboard API."""
