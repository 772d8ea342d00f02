"""In-process credential and session stores."""
