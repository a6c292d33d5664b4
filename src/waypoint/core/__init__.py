# src/waypoint/core/__init__.py
"""Core infrastructure: configuration, logging, clock, event sinks, serialization, storage."""
