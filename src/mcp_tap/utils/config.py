from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class StoreConfig:
    max_events_per_session: int = 1000


@dataclass
class TapConfig:
    session_header: str = "mcp-session-id"
    unknown_session_id: str = "unknown"
    # Requests with these methods and no session header wait for the response
    deferred_methods: tuple = ("initialize",)
    record_client_info: bool = True
    close_on_delete: bool = True


@dataclass
class HubConfig:
    ws_path: str = "/events"
    wildcard: str = "*"
    # Per-observer backlog; messages beyond it are dropped for that observer
    max_queued_messages: int = 1000


@dataclass
class ApiConfig:
    enabled: bool = True
    prefix: str = "/api/events"
    mcp_path: str = "/mcp"


@dataclass
class ObservabilityConfig:
    store: StoreConfig = dataclasses.field(default_factory=StoreConfig)
    tap: TapConfig = dataclasses.field(default_factory=TapConfig)
    hub: HubConfig = dataclasses.field(default_factory=HubConfig)
    api: ApiConfig = dataclasses.field(default_factory=ApiConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObservabilityConfig":
        def build(dc_cls, key):
            values = dict(data.get(key, {}))
            if dc_cls is TapConfig and "deferred_methods" in values:
                values["deferred_methods"] = tuple(values["deferred_methods"])
            return dc_cls(**values)

        config = cls(
            store=build(StoreConfig, "store"),
            tap=build(TapConfig, "tap"),
            hub=build(HubConfig, "hub"),
            api=build(ApiConfig, "api"),
        )
        if config.store.max_events_per_session < 1:
            raise ValueError("store.max_events_per_session must be at least 1")
        if config.hub.max_queued_messages < 1:
            raise ValueError("hub.max_queued_messages must be at least 1")
        return config
