"""Infrastructure layer: config, logging and tracing."""
