"""Fact extraction, detector registry and detector engine."""
