"""Conversation log, attachments and session context."""
