"""Realtime notification and chat client for the B2B marketplace."""

__version__ = "0.1.0"
