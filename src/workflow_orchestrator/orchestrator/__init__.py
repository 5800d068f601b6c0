"""Process-level wiring: settings, structured logging, the container and the CLI."""
