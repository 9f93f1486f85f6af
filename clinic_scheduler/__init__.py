"""Conversational appointment scheduling core for a dental clinic."""
