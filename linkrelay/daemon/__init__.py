"""Single-instance daemon supervision."""
