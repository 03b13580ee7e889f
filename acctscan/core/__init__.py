"""Shared types, settings, logging and errors."""
