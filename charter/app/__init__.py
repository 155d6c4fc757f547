"""Process wiring: entry point and health endpoint."""
