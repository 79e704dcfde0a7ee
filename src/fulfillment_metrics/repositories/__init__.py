"""Order and pack error sources."""
