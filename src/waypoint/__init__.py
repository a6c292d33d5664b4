"""
Waypoint: resumable step pipelines for long-running tasks.

Runs multi-step tasks that checkpoint after every step and every work unit,
stream progress to observers, and accept pause, resume, and cancel requests
at any time.
"""

__version__ = "0.1.0"
