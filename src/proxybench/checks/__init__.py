"""Pre-flight and end-to-end sanity checks."""
