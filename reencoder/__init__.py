"""Incremental file reencoder: state tracking, scanning and scheduling."""
