"""Ceremony orchestration, sessions and identity."""
