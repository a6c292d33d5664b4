# src/waypoint/api/server.py
"""Starlette ASGI application for the task control API.

Usage:
    from waypoint.api.server import create_app
    from waypoint.core.config import load_settings

    app = create_app(load_settings())

    # Or wrap an existing service for more control
    server = WaypointServer(service)
    app = server.app

Streams are newline-delimited JSON (``application/x-ndjson``): one
``type``-tagged event per line, closing after ``done``, ``error``,
``cancelled``, or ``paused``. The run itself executes on the service's
worker pool; a client that disconnects only detaches its stream.
"""

import json
from collections.abc import Iterator
from typing import Any

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from waypoint import __version__
from waypoint.contracts.enums import TaskType
from waypoint.contracts.errors import (
    InvalidTransitionError,
    PipelineError,
    TaskBusyError,
    TaskNotFoundError,
    TaskValidationError,
)
from waypoint.core.config import WaypointSettings
from waypoint.core.events import EventStream
from waypoint.core.logging import get_logger
from waypoint.engine.service import TaskService

logger = get_logger(__name__)

NDJSON = "application/x-ndjson"


def _ndjson(stream: EventStream) -> Iterator[str]:
    """Render a stream line by line; closing the response detaches the stream."""
    try:
        for event in stream:
            yield json.dumps(event.to_wire()) + "\n"
    finally:
        stream.close()


async def _error_response(request: Request, exc: Exception) -> Response:
    status_code = _ERROR_STATUS[type(exc)]
    return JSONResponse({"error": str(exc)}, status_code=status_code)


_ERROR_STATUS: dict[type[Exception], int] = {
    TaskValidationError: 400,
    TaskNotFoundError: 404,
    InvalidTransitionError: 409,
    TaskBusyError: 409,
}


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except json.JSONDecodeError as e:
        raise TaskValidationError(f"Request body is not valid JSON: {e}") from e
    if not isinstance(body, dict):
        raise TaskValidationError("Request body must be a JSON object")
    return body


def _task_type(value: Any) -> TaskType:
    try:
        return TaskType(value)
    except ValueError as e:
        allowed = ", ".join(str(t) for t in TaskType)
        raise TaskValidationError(f"Unknown taskType {value!r}; expected one of: {allowed}") from e


class WaypointServer:
    """HTTP binding of the task service."""

    def __init__(self, service: TaskService) -> None:
        self._service = service
        self._app = self._create_app()

    def _create_app(self) -> Starlette:
        """Create the Starlette application with all routes."""
        routes = [
            Route("/health", self._health_endpoint, methods=["GET"]),
            Route("/tasks", self._create_task_endpoint, methods=["POST"]),
            Route("/tasks", self._list_tasks_endpoint, methods=["GET"]),
            Route("/tasks/{task_id}", self._get_task_endpoint, methods=["GET"]),
            Route("/tasks/{task_id}", self._cancel_endpoint, methods=["DELETE"]),
            Route("/tasks/{task_id}/stream", self._stream_endpoint, methods=["GET"]),
            Route("/tasks/{task_id}/pause", self._pause_endpoint, methods=["POST"]),
            Route("/tasks/{task_id}/resume", self._resume_endpoint, methods=["POST"]),
            Route("/tasks/{task_id}/retry", self._retry_endpoint, methods=["POST"]),
            Route("/summaries/{summary_id}/changes", self._changes_endpoint, methods=["GET"]),
            Route("/summaries/{summary_id}/refresh", self._refresh_endpoint, methods=["POST"]),
        ]
        handlers = {exc_type: _error_response for exc_type in _ERROR_STATUS}
        return Starlette(debug=False, routes=routes, exception_handlers=handlers)

    @property
    def app(self) -> Starlette:
        """Get the Starlette ASGI application."""
        return self._app

    @property
    def service(self) -> TaskService:
        return self._service

    # === Endpoint handlers ===

    async def _health_endpoint(self, request: Request) -> JSONResponse:
        """Handle GET /health."""
        return JSONResponse({"status": "healthy", "version": __version__})

    async def _create_task_endpoint(self, request: Request) -> JSONResponse:
        """Handle POST /tasks."""
        body = await _json_body(request)
        task_type = _task_type(body.get("taskType"))
        owner_id = body.get("ownerId")
        if not isinstance(owner_id, str) or not owner_id:
            raise TaskValidationError("ownerId is required")
        parameters = body.get("parameters", {})
        if not isinstance(parameters, dict):
            raise TaskValidationError("parameters must be a JSON object")

        task, created = await run_in_threadpool(self._service.start, task_type, owner_id, parameters)
        payload: dict[str, Any] = {"taskId": task.task_id, "status": str(task.status)}
        if not created:
            payload["existing"] = True
        return JSONResponse(payload, status_code=201 if created else 200)

    async def _list_tasks_endpoint(self, request: Request) -> JSONResponse:
        """Handle GET /tasks?ownerId=...&taskType=..."""
        owner_id = request.query_params.get("ownerId")
        if not owner_id:
            raise TaskValidationError("ownerId query parameter is required")
        raw_type = request.query_params.get("taskType")
        task_type = _task_type(raw_type) if raw_type is not None else None
        tasks = await run_in_threadpool(self._service.list_tasks, owner_id, task_type)
        return JSONResponse({"tasks": [task.to_wire() for task in tasks]})

    async def _get_task_endpoint(self, request: Request) -> JSONResponse:
        """Handle GET /tasks/{task_id}."""
        task = await run_in_threadpool(self._service.get, request.path_params["task_id"])
        return JSONResponse(task.to_wire())

    async def _cancel_endpoint(self, request: Request) -> JSONResponse:
        """Handle DELETE /tasks/{task_id}."""
        task = await run_in_threadpool(self._service.cancel, request.path_params["task_id"])
        return JSONResponse({"taskId": task.task_id, "status": str(task.status)})

    async def _stream_endpoint(self, request: Request) -> StreamingResponse:
        """Handle GET /tasks/{task_id}/stream."""
        task_id = request.path_params["task_id"]
        # 404 before the stream opens
        await run_in_threadpool(self._service.get, task_id)
        stream = self._service.stream(task_id)
        return StreamingResponse(_ndjson(stream), media_type=NDJSON, headers={"X-Task-Id": task_id})

    async def _pause_endpoint(self, request: Request) -> JSONResponse:
        """Handle POST /tasks/{task_id}/pause."""
        task = await run_in_threadpool(self._service.pause, request.path_params["task_id"])
        return JSONResponse({"taskId": task.task_id, "status": str(task.status)})

    async def _resume_endpoint(self, request: Request) -> StreamingResponse:
        """Handle POST /tasks/{task_id}/resume.

        Resuming a FAILED task streams its retry; X-Task-Id names the task
        that actually runs.
        """
        task, stream = await run_in_threadpool(self._service.resume_stream, request.path_params["task_id"])
        return StreamingResponse(_ndjson(stream), media_type=NDJSON, headers={"X-Task-Id": task.task_id})

    async def _retry_endpoint(self, request: Request) -> JSONResponse:
        """Handle POST /tasks/{task_id}/retry."""
        task = await run_in_threadpool(self._service.retry, request.path_params["task_id"])
        return JSONResponse({"taskId": task.task_id, "status": str(task.status)}, status_code=201)

    async def _changes_endpoint(self, request: Request) -> JSONResponse:
        """Handle GET /summaries/{summary_id}/changes."""
        try:
            changes = await run_in_threadpool(self._service.detect_changes, request.path_params["summary_id"])
        except PipelineError as e:
            return JSONResponse({"error": str(e)}, status_code=404)
        return JSONResponse(
            {
                "summaryId": changes.summary_id,
                "changed": list(changes.changed),
                "unchanged": list(changes.unchanged),
                "upToDate": changes.up_to_date,
            }
        )

    async def _refresh_endpoint(self, request: Request) -> JSONResponse:
        """Handle POST /summaries/{summary_id}/refresh."""
        try:
            changes, task = await run_in_threadpool(self._service.start_refresh, request.path_params["summary_id"])
        except PipelineError as e:
            return JSONResponse({"error": str(e)}, status_code=404)
        if task is None:
            return JSONResponse({"summaryId": changes.summary_id, "upToDate": True})
        return JSONResponse(
            {
                "summaryId": changes.summary_id,
                "upToDate": False,
                "taskId": task.task_id,
                "status": str(task.status),
                "changed": list(changes.changed),
                "unchanged": list(changes.unchanged),
            },
            status_code=201,
        )


def create_app(settings: WaypointSettings) -> Starlette:
    """Create a Starlette ASGI application from settings.

    Args:
        settings: Resolved waypoint settings

    Returns:
        Starlette ASGI application
    """
    server = WaypointServer(TaskService.from_settings(settings))
    server.app.state.server = server
    return server.app
