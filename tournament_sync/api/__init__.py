"""HTTP surface of the sync engine."""
