"""Services that talk to the network or the local filesystem."""
