"""Address derivation, binary layouts and RPC access for the trading program."""
