import asyncio
from fastapi import WebSocket
from collections import deque
from typing import Deque, Optional
from utilities import now_ts
from utilities import SUBSCRIBER_QUEUE_SIZE, REPLAY_BUFFER_SIZE

# ------------ In-memory structures ------------
class Subscriber:
    ''' Represents a websocket client listening on one channel.'''

    def __init__(self, client_id: str, websocket: WebSocket, queue_size: int = SUBSCRIBER_QUEUE_SIZE):

        # initialize fields
        self.client_id = client_id
        self.websocket = websocket

        # per subscriber message buffer
        # publisher should never wait for a slow subscriber
        # if subscriber is slow messages accumulate up to queue_size
        # if queue is full, oldest message is dropped and SLOW_CONSUMER error is enqueued
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

        # background async task that pops from queue and sends via WebSocket
        self.sender_task: Optional[asyncio.Task] = None
        self.connected = True

    # graceful cleanup
    async def stop(self):
        self.connected = False
        if self.sender_task and self.sender_task is not asyncio.current_task():
            self.sender_task.cancel()
            try:
                await self.sender_task
            except asyncio.CancelledError:
                pass

class Topic:
    ''' A named channel: subscriber bookkeeping plus a bounded replay buffer.'''

    def __init__(self, name: str, capacity: int = REPLAY_BUFFER_SIZE):
        self.name = name
        self.subscribers = 0
        # oldest entry falls off the head once capacity is reached
        self.history: Deque[dict] = deque(maxlen=capacity)
        self.created_at = now_ts()
        # stats, never decremented by eviction
        self.messages_published = 0

    @property
    def capacity(self) -> int:
        return self.history.maxlen

    def append(self, msg: dict):
        self.history.append(msg)
        self.messages_published += 1

    def __repr__(self):
        return f"Topic(name={self.name!r}, subscribers={self.subscribers}, messages={self.messages_published})"
