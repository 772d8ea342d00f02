"""Passgate: passkey registration and login ceremonies."""
