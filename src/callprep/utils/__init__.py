"""Utility helpers for the call prep research engine."""
