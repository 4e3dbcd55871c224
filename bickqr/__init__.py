"""Bickqr processing core."""
