"""Redis caching for report aggregates."""
