"""Core trading logic for the arena client."""

__all__ = ["logging", "trading_core"]
