"""Utility helpers for the helper workers."""
