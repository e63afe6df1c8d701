"""Conversation state manager and assistant-context construction."""
