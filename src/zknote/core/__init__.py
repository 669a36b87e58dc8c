"""Note, tree and proof pipeline."""
