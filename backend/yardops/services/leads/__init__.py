"""Gmail lead inbox."""
