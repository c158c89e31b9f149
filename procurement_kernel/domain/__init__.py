"""Pure domain types for the procurement kernel (zero I/O)."""
