import asyncio
import json
import sys
import uuid
import websockets  # lightweight client; to install: pip install websockets

async def main(topic: str = "orders"):
    uri = "ws://localhost:8000/ws"
    async with websockets.connect(uri) as ws:
        # publish a test message to the topic (create it first: POST /topics {"name": "orders"})
        msg = {
            "type": "publish",
            "topic": topic,
            "message": {
                "id": str(uuid.uuid4()),
                "payload": {"order_id": "ORD-1", "amount": 9.99, "currency": "USD"}
            },
            "request_id": str(uuid.uuid4())
        }
        print("Client Message: ", msg)
        await ws.send(json.dumps(msg))
        resp = json.loads(await ws.recv())
        if resp["type"] == "error":
            print("Publish failed:", resp["error"]["code"], resp["error"]["message"])
        else:
            print("Stored as", resp["message_id"], "broadcast:", resp["broadcast"])

if __name__ == "__main__":
    asyncio.run(main(*sys.argv[1:2]))
