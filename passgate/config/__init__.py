"""Configuration: settings and logging."""
