"""Collaborator clients for external analysis providers."""

from waypoint.clients.http import (
    FallbackWorkUnitProcessor,
    HttpSummarizer,
    HttpWorkUnitProcessor,
    build_processor,
    build_summarizer,
)

__all__ = [
    "FallbackWorkUnitProcessor",
    "HttpSummarizer",
    "HttpWorkUnitProcessor",
    "build_processor",
    "build_summarizer",
]
