from __future__ import annotations

import enum
import typing as t
from dataclasses import dataclass
from datetime import datetime

from mcp_tap.exceptions import MalformedEventError

RequestId = t.Union[str, int]
JSON = t.Dict[str, t.Any]


class EventType(str, enum.Enum):
    REQUEST = "request"
    RESPONSE = "response"
    NOTIFICATION = "notification"
    TASK_CREATED = "task:created"
    TASK_STATUS = "task:status"


# Wire events. `timestamp` is milliseconds since the epoch, set by the EventStore.
@dataclass(frozen=True)
class BaseEvent:
    timestamp: int

    type: t.ClassVar[EventType]

    def to_dict(self) -> JSON:
        raise NotImplementedError


@dataclass(frozen=True)
class RequestEvent(BaseEvent):
    method: str
    id: t.Optional[RequestId] = None
    params: t.Any = None

    type: t.ClassVar[EventType] = EventType.REQUEST

    def to_dict(self) -> JSON:
        data: JSON = {"type": self.type.value, "timestamp": self.timestamp}
        if self.id is not None:
            data["id"] = self.id
        data["method"] = self.method
        if self.params is not None:
            data["params"] = self.params
        return data


@dataclass(frozen=True)
class ResponseEvent(BaseEvent):
    # None for error replies to requests whose id could not be read
    id: t.Optional[RequestId]
    result: t.Any = None
    error: t.Optional[JSON] = None

    type: t.ClassVar[EventType] = EventType.RESPONSE

    def to_dict(self) -> JSON:
        data: JSON = {"type": self.type.value, "timestamp": self.timestamp, "id": self.id}
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class NotificationEvent(BaseEvent):
    method: str
    params: t.Any = None

    type: t.ClassVar[EventType] = EventType.NOTIFICATION

    def to_dict(self) -> JSON:
        data: JSON = {"type": self.type.value, "timestamp": self.timestamp, "method": self.method}
        if self.params is not None:
            data["params"] = self.params
        return data


@dataclass(frozen=True)
class TaskCreatedEvent(BaseEvent):
    task_id: str
    request_id: t.Optional[RequestId] = None
    tool_name: str = "unknown"
    tool_args: t.Any = None

    type: t.ClassVar[EventType] = EventType.TASK_CREATED

    def to_dict(self) -> JSON:
        data: JSON = {
            "type": self.type.value,
            "timestamp": self.timestamp,
            "taskId": self.task_id,
            "toolName": self.tool_name,
        }
        if self.tool_args is not None:
            data["toolArgs"] = self.tool_args
        data["requestId"] = self.request_id
        return data


@dataclass(frozen=True)
class TaskStatusEvent(BaseEvent):
    task_id: str
    new_status: str
    previous_status: t.Optional[str] = None
    status_message: t.Optional[str] = None

    type: t.ClassVar[EventType] = EventType.TASK_STATUS

    def to_dict(self) -> JSON:
        data: JSON = {
            "type": self.type.value,
            "timestamp": self.timestamp,
            "taskId": self.task_id,
            "previousStatus": self.previous_status,
            "newStatus": self.new_status,
        }
        if self.status_message is not None:
            data["statusMessage"] = self.status_message
        return data


Event = t.Union[RequestEvent, ResponseEvent, NotificationEvent, TaskCreatedEvent, TaskStatusEvent]


def _require_str(data: t.Mapping[str, t.Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise MalformedEventError(f"{data.get('type')!r} event requires string field {key!r}")
    return value


def _optional_str(data: t.Mapping[str, t.Any], key: str) -> t.Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise MalformedEventError(f"{data.get('type')!r} event field {key!r} must be a string")
    return value


def _request_id(data: t.Mapping[str, t.Any], key: str) -> t.Optional[RequestId]:
    value = data.get(key)
    if value is None:
        return None
    # bool is an int subclass but never a valid JSON-RPC id
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise MalformedEventError(f"{data.get('type')!r} event field {key!r} must be a string or integer")
    return value


def event_from_dict(data: t.Mapping[str, t.Any], timestamp: int) -> Event:
    """Build an event from its wire shape (without timestamp).

    Raises MalformedEventError when the type is unknown or a required field
    is missing.
    """
    if not isinstance(data, t.Mapping):
        raise MalformedEventError("event input must be a mapping")
    try:
        event_type = EventType(data.get("type"))
    except (ValueError, TypeError):
        raise MalformedEventError(f"unknown event type {data.get('type')!r}") from None

    if event_type is EventType.REQUEST:
        return RequestEvent(
            timestamp=timestamp,
            method=_require_str(data, "method"),
            id=_request_id(data, "id"),
            params=data.get("params"),
        )
    if event_type is EventType.RESPONSE:
        error = data.get("error")
        if error is not None and not isinstance(error, t.Mapping):
            raise MalformedEventError("'response' event field 'error' must be an object")
        if "id" not in data:
            raise MalformedEventError("'response' event requires field 'id'")
        return ResponseEvent(
            timestamp=timestamp,
            id=_request_id(data, "id"),
            result=data.get("result"),
            error=dict(error) if error is not None else None,
        )
    if event_type is EventType.NOTIFICATION:
        return NotificationEvent(timestamp=timestamp, method=_require_str(data, "method"), params=data.get("params"))
    if event_type is EventType.TASK_CREATED:
        tool_name = data.get("toolName")
        return TaskCreatedEvent(
            timestamp=timestamp,
            task_id=_require_str(data, "taskId"),
            request_id=_request_id(data, "requestId"),
            tool_name=tool_name if isinstance(tool_name, str) and tool_name else "unknown",
            tool_args=data.get("toolArgs"),
        )
    return TaskStatusEvent(
        timestamp=timestamp,
        task_id=_require_str(data, "taskId"),
        new_status=_require_str(data, "newStatus"),
        previous_status=_optional_str(data, "previousStatus"),
        status_message=_optional_str(data, "statusMessage"),
    )


@dataclass(frozen=True)
class ClientInfo:
    name: str
    version: t.Optional[str] = None

    @classmethod
    def from_params(cls, params: t.Any) -> t.Optional["ClientInfo"]:
        """Read `clientInfo` out of initialize request params, if present."""
        if not isinstance(params, dict):
            return None
        info = params.get("clientInfo")
        if not isinstance(info, dict) or not isinstance(info.get("name"), str):
            return None
        version = info.get("version")
        return cls(name=info["name"], version=str(version) if version is not None else None)

    def to_dict(self) -> JSON:
        data: JSON = {"name": self.name}
        if self.version is not None:
            data["version"] = self.version
        return data


@dataclass
class SessionMetadata:
    client_info: t.Optional[ClientInfo] = None
    created_at: t.Optional[datetime] = None


@dataclass
class SessionSummary:
    session_id: str
    event_count: int
    client_info: t.Optional[ClientInfo] = None
    created_at: t.Optional[datetime] = None

    def to_dict(self) -> JSON:
        data: JSON = {"sessionId": self.session_id, "eventCount": self.event_count}
        if self.client_info is not None:
            data["clientInfo"] = self.client_info.to_dict()
        if self.created_at is not None:
            data["createdAt"] = self.created_at.isoformat()
        return data
