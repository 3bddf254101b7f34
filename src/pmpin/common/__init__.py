"""Shared transport and logging helpers."""
