"""Conversation state engine and UI for a grounded chat assistant."""
