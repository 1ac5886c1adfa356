"""Core capture domain: models, pipeline, scope propagation and guards."""
