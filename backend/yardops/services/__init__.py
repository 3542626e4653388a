"""Service layer: business workflows over the repositories."""
