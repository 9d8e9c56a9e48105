"""SDK handle construction."""
