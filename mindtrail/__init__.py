"""Mindtrail: guided visualization and task progression engine."""
