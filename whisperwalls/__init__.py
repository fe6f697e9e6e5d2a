"""Whisper Walls backend: location-anchored ephemeral messages."""
