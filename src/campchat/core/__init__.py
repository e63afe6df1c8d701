"""Core types, errors and session scope."""
