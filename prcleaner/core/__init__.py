"""Core pipeline: filter, schedule, dispatch."""
