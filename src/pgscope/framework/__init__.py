"""Framework layer: the observability pipeline."""
