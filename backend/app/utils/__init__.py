"""Utility modules package."""
