"""Conversation history browsing and resume."""
