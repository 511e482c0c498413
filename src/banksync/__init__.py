"""Bank transaction synchronization pipeline."""
