"""Paper-trading arena client package."""

__all__ = ["core", "ledger", "services"]
