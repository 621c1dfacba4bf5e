"""Completion backends implementing the provider contract."""
