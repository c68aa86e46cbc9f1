from __future__ import annotations

import logging
import typing as t

from mcp_tap.monitoring import metrics

from .event_store import EventStore
from .interceptor import emit_safely
from .models import EventType, RequestId

_logger = logging.getLogger(__name__)

_TASK_STORE_METHODS = (
    "create_task",
    "get_task",
    "update_task_status",
    "store_task_result",
    "get_task_result",
    "list_tasks",
)


class TaskStore(t.Protocol):
    """The task-store operations the observable wrapper forwards."""

    async def create_task(
        self, task_params: t.Any, request_id: RequestId, request: t.Any, session_id: t.Optional[str] = None
    ) -> t.Any: ...

    async def get_task(self, task_id: str, session_id: t.Optional[str] = None) -> t.Any: ...

    async def update_task_status(
        self,
        task_id: str,
        status: str,
        status_message: t.Optional[str] = None,
        session_id: t.Optional[str] = None,
    ) -> None: ...

    async def store_task_result(
        self, task_id: str, status: str, result: t.Any, session_id: t.Optional[str] = None
    ) -> None: ...

    async def get_task_result(self, task_id: str, session_id: t.Optional[str] = None) -> t.Any: ...

    async def list_tasks(self, cursor: t.Optional[str] = None, session_id: t.Optional[str] = None) -> t.Any: ...


def _field(obj: t.Any, name: str) -> t.Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def extract_tool_call(request: t.Any) -> t.Tuple[str, t.Any]:
    """Return (tool name, arguments) from a tools/call style request.

    Works on dicts and pydantic request models; falls back to
    ("unknown", None) when nothing usable is found.
    """
    try:
        root = getattr(request, "root", None)
        if root is not None and not isinstance(request, dict):
            request = root
        params = _field(request, "params")
        name = _field(params, "name") if params is not None else None
        arguments = _field(params, "arguments") if params is not None else None
    except Exception:
        _logger.debug("ObservableTaskStore: tool info extraction failed", exc_info=True)
        return "unknown", None
    if not isinstance(name, str) or not name:
        return "unknown", None
    return name, arguments


class ObservableTaskStore:
    """A task store decorator that records task lifecycle events.

    Emits ``task:created`` after a task is created and ``task:status`` after
    every status change (explicit update or result storage). The previous
    status is read right before the wrapped mutation. Reads pass through
    unobserved. Errors from the wrapped store propagate unchanged; failures
    of the observation itself never do.
    """

    def __init__(self, inner: TaskStore, bus: EventStore) -> None:
        missing = [name for name in _TASK_STORE_METHODS if not hasattr(inner, name)]
        if missing:
            raise TypeError(f"wrapped task store is missing: {', '.join(missing)}")
        self._inner = inner
        self._bus = bus

    @property
    def wrapped(self) -> TaskStore:
        return self._inner

    async def create_task(
        self, task_params: t.Any, request_id: RequestId, request: t.Any, session_id: t.Optional[str] = None
    ) -> t.Any:
        task = await self._inner.create_task(task_params, request_id, request, session_id)
        tool_name, tool_args = extract_tool_call(request)
        task_id = _field(task, "taskId") or _field(task, "task_id")
        emit_safely(
            self._bus,
            {
                "type": EventType.TASK_CREATED.value,
                "taskId": task_id,
                "toolName": tool_name,
                "toolArgs": tool_args,
                "requestId": request_id,
            },
            "task_store",
        )
        return task

    async def get_task(self, task_id: str, session_id: t.Optional[str] = None) -> t.Any:
        return await self._inner.get_task(task_id, session_id)

    async def update_task_status(
        self,
        task_id: str,
        status: str,
        status_message: t.Optional[str] = None,
        session_id: t.Optional[str] = None,
    ) -> None:
        previous_status = await self._current_status(task_id, session_id)
        await self._inner.update_task_status(task_id, status, status_message, session_id)
        self._emit_status(task_id, previous_status, status, status_message)

    async def store_task_result(
        self, task_id: str, status: str, result: t.Any, session_id: t.Optional[str] = None
    ) -> None:
        previous_status = await self._current_status(task_id, session_id)
        await self._inner.store_task_result(task_id, status, result, session_id)
        self._emit_status(task_id, previous_status, status, None)

    async def get_task_result(self, task_id: str, session_id: t.Optional[str] = None) -> t.Any:
        return await self._inner.get_task_result(task_id, session_id)

    async def list_tasks(self, cursor: t.Optional[str] = None, session_id: t.Optional[str] = None) -> t.Any:
        return await self._inner.list_tasks(cursor, session_id)

    async def _current_status(self, task_id: str, session_id: t.Optional[str]) -> t.Optional[str]:
        try:
            task = await self._inner.get_task(task_id, session_id)
        except Exception:
            metrics.tap_capture_errors_total.inc(tap="task_store")
            _logger.warning("ObservableTaskStore: could not read status of task %s", task_id, exc_info=True)
            return None
        if task is None:
            return None
        status = _field(task, "status")
        # str-valued enums report their value
        return getattr(status, "value", status) if status is not None else None

    def _emit_status(
        self, task_id: str, previous_status: t.Optional[str], status: t.Any, status_message: t.Optional[str]
    ) -> None:
        emit_safely(
            self._bus,
            {
                "type": EventType.TASK_STATUS.value,
                "taskId": task_id,
                "previousStatus": previous_status,
                "newStatus": getattr(status, "value", status),
                "statusMessage": status_message,
            },
            "task_store",
        )
