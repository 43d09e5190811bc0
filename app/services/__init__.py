"""Service layer: engine, factors, providers and pipeline."""
