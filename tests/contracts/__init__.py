"""Tests for the contracts package.

Contract tests pin the wire forms, the status transition table, and the
checkpoint envelope that the engine, API, and CLI all depend on.
"""
