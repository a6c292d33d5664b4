"""HTTP API for creating, streaming, and controlling tasks."""

from waypoint.api.server import WaypointServer, create_app

__all__ = ["WaypointServer", "create_app"]
