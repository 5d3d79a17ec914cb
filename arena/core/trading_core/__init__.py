"""Trading core for the arena client.

This package exposes the position/competition facade together with the
configuration, error taxonomy, models and precondition checks it uses.

Run the command line with ``python -m arena.cli``.
"""

__all__ = ["config", "context", "errors", "models", "trading_service", "validator"]
