"""Infrastructure layer: persistence, provider clients, rate limiting, logging."""
