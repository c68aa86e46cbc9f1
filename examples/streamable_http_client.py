#!/usr/bin/env python3

import asyncio
import json
from typing import Any, Tuple

import click
import httpx


async def shttp_post(
    client: httpx.AsyncClient, url: str, payload: dict, *, headers: dict | None = None
) -> Tuple[str | None, Any | None]:
    """POST a JSON-RPC message and return (session id, response message)."""
    async with client.stream("POST", url, json=payload, headers=headers) as r:
        r.raise_for_status()
        sid = r.headers.get("mcp-session-id")
        if "text/event-stream" not in r.headers.get("content-type", ""):
            body = await r.aread()
            return sid, json.loads(body) if body else None
        async for line in r.aiter_lines():
            if not line.startswith("data:"):
                continue
            try:
                message = json.loads(line[5:].strip())
            except ValueError:
                continue
            # Notifications stream ahead of the response
            if "id" in message:
                return sid, message
        return sid, None


async def run(base: str, api: str, close: bool) -> None:
    default_headers = {
        "Accept": "application/json, text/event-stream",
        "Content-Type": "application/json",
        "MCP-Protocol-Version": "2025-06-18",
    }

    async with httpx.AsyncClient(timeout=20.0, follow_redirects=True, headers=default_headers) as client:
        init = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "initialize",
            "params": {
                "protocolVersion": "2025-06-18",
                "capabilities": {},
                "clientInfo": {"name": "example-client", "version": "0.1.0"},
            },
        }
        sid, message = await shttp_post(client, base, init)
        print("initialize:", message)
        print("session id:", sid)
        headers = {"Mcp-Session-Id": sid} if sid else {}

        await shttp_post(client, base, {"jsonrpc": "2.0", "method": "notifications/initialized"}, headers=headers)

        _, message = await shttp_post(client, base, {"jsonrpc": "2.0", "id": 2, "method": "tools/list"}, headers=headers)
        print("tools/list:", message)

        call = {
            "jsonrpc": "2.0",
            "id": 3,
            "method": "tools/call",
            "params": {
                "name": "start-notification-stream",
                "arguments": {"interval": 0.25, "count": 4, "caller": "client"},
            },
        }
        _, message = await shttp_post(client, base, call, headers=headers)
        print("tools/call:", message)

        # What the tap recorded for this session
        r = await client.get(f"{api}/sessions/{sid}")
        r.raise_for_status()
        recorded = r.json()
        print(f"recorded {recorded['eventCount']} events:")
        for event in recorded["events"]:
            print("  ", event["timestamp"], event["type"], event.get("method") or event.get("id"))

        if close and sid:
            await client.delete(base, headers=headers)
            sessions = (await client.get(f"{api}/sessions")).json()["sessions"]
            print("open sessions after DELETE:", [s["sessionId"] for s in sessions])


@click.command()
@click.option("--base", default="http://127.0.0.1:3000/mcp/", help="Base URL of MCP endpoint (must end with /)")
@click.option("--api", default="http://127.0.0.1:3000/api/events", help="Base URL of the event read API")
@click.option("--close/--no-close", default=True, help="Terminate the session with DELETE when done")
def main(base: str, api: str, close: bool) -> None:
    asyncio.run(run(base, api, close))


if __name__ == "__main__":
    main()
