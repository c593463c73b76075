"""
Voice Assistant - continuous spoken conversations with Gemini.

Speech input, tab audio transcription and typed text all feed one
conversation session that streams replies from the model and keeps
latency, token and cost metrics as it goes.
"""

__version__ = "1.0.0"
