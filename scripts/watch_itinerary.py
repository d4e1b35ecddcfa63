#!/usr/bin/env python3
"""
Demo Client - Itinerary Watcher

Behaves like a browser tab on an itinerary page:
1. Connects to the bus
2. Subscribes to progress.<execution>, chat.<itinerary> and itinerary.<itinerary>
3. Sends a chat message to chat.send.<itinerary>
4. Pings periodically so the heartbeat reaper keeps the channel
5. Prints everything the bus delivers

Usage:
    python scripts/watch_itinerary.py [itinerary_id] [execution_id] [message]

Push progress from another terminal:
    curl -X POST localhost:8080/executions/exec-42/progress \\
         -H 'content-type: application/json' -d '{"phase": "searching-flights"}'
"""

import asyncio
import json
import sys

import websockets

from tripbus.protocol import chat_send_target, chat_topic, itinerary_topic, progress_topic

BUS_URL = "ws://localhost:8080/ws"
PING_INTERVAL = 20


def create_frame(action: str, topic: str = None, payload: dict = None) -> str:
    """Create a client frame."""
    frame = {"action": action}
    if topic:
        frame["topic"] = topic
    if payload:
        frame["payload"] = payload
    return json.dumps(frame)


async def ping_loop(ws):
    """Send periodic pings."""
    while True:
        await asyncio.sleep(PING_INTERVAL)
        try:
            await ws.send(create_frame("ping"))
        except Exception:
            break


def print_message(data: dict) -> None:
    msg_type = data.get("type")
    topic = data.get("topic")
    payload = data.get("payload", {})
    stamp = data.get("timestamp", "")[11:19]

    if msg_type == "progress":
        percent = payload.get("progress_percent")
        suffix = f" ({percent:.0f}%)" if percent is not None else ""
        print(f"[{stamp}] {topic}: {payload.get('phase')}{suffix} {payload.get('message') or ''}")
    elif msg_type == "chat":
        print(f"[{stamp}] {topic} <{payload.get('sender')}> {payload.get('text')}")
    elif msg_type == "update":
        print(f"[{stamp}] {topic}: {payload.get('update_type')} {json.dumps(payload.get('data'))}")
    elif msg_type == "error":
        print(f"[{stamp}] {topic or 'channel'} ERROR {payload.get('error_code')}: {payload.get('error_message')}")
    elif msg_type == "pong":
        pass
    else:
        print(f"[{stamp}] {msg_type} {topic or ''}")


async def main():
    itinerary_id = sys.argv[1] if len(sys.argv) > 1 else "trip-7"
    execution_id = sys.argv[2] if len(sys.argv) > 2 else "exec-42"
    message = sys.argv[3] if len(sys.argv) > 3 else "change day 2 to Paris"

    print("=" * 70)
    print("ITINERARY WATCHER")
    print("=" * 70)
    print(f"Itinerary: {itinerary_id}")
    print(f"Execution: {execution_id}")
    print(f"Bus URL: {BUS_URL}")
    print("=" * 70)

    try:
        async with websockets.connect(BUS_URL) as ws:
            for topic in (
                progress_topic(execution_id),
                chat_topic(itinerary_id),
                itinerary_topic(itinerary_id),
            ):
                await ws.send(create_frame("subscribe", topic))

            await ws.send(create_frame(
                "send",
                chat_send_target(itinerary_id),
                {"text": message, "context": {"scope": "trip"}},
            ))
            print(f"\nSent: {message}\n")

            ping_task = asyncio.create_task(ping_loop(ws))
            try:
                async for raw in ws:
                    print_message(json.loads(raw))
            except asyncio.CancelledError:
                pass
            finally:
                ping_task.cancel()

            print(f"\nConnection closed by the bus ({ws.close_code} {ws.close_reason})")

    except ConnectionRefusedError:
        print("\nCannot connect to the bus. Start it with:")
        print("   tripbus   (or: uvicorn tripbus.transport.app:app)")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nWatcher shutting down")


if __name__ == "__main__":
    asyncio.run(main())
