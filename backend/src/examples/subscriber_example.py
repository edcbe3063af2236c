import asyncio
import json
import sys
import uuid
import websockets

async def main(topic: str = "orders"):
    uri = "ws://localhost:8000/ws"
    client_id = f"sub-{uuid.uuid4().hex[:8]}"
    async with websockets.connect(uri) as ws:
        # lifecycle announcements for every topic
        await ws.send(json.dumps({"type": "subscribe", "channel": "control-topics", "client_id": client_id}))
        # the topic itself, replaying the 5 most recent messages
        sub = {
            "type": "subscribe",
            "topic": topic,
            "client_id": client_id,
            "last_n": 5,
            "request_id": str(uuid.uuid4())
        }
        await ws.send(json.dumps(sub))
        print("Awaiting messages... (press Ctrl+C to exit)")
        try:
            async for raw in ws:
                frame = json.loads(raw)
                if frame["type"] == "event":
                    print(f"[{frame['channel']}] {frame['event']}:", frame["data"])
                else:
                    print("Received:", frame)
        finally:
            unsub = {"type": "unsubscribe", "topic": topic, "client_id": client_id, "request_id": str(uuid.uuid4())}
            await ws.send(json.dumps(unsub))
            print("Unsubscribed.")

if __name__ == "__main__":
    try:
        asyncio.run(main(*sys.argv[1:2]))
    except KeyboardInterrupt:
        pass
