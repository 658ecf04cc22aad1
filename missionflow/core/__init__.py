"""Infrastructure layer: config, logging, database, events, cache."""
