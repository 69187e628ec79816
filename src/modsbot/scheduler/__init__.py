"""Background periodic jobs."""
