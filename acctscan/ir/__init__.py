"""Intermediate representation consumed by the analyzer."""
