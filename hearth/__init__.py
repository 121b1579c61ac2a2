"""Hearth: real-time home state bridge."""
