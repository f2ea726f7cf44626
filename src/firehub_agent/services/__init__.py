"""Storage backends for the relay."""
