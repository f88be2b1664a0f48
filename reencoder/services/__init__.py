"""Core services: state store, scanner, scheduler, cleaner and FLAC collaborators."""
