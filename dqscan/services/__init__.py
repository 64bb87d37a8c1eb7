"""Application services built on the scheduler core."""
