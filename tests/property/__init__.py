# tests/property/__init__.py
"""Property-based tests for waypoint.

Properties that must hold for every pause point, every transition
sequence, and every refresh partition, not just the examples we think of.
"""
