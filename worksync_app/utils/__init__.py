"""Shared helpers for the WorkSync application."""
