"""Static chain metadata and per-chain address tables."""
