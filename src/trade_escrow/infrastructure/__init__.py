"""Infrastructure adapters — database, Redis, mediation state."""
