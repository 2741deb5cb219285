"""Structured logging and error recovery."""
