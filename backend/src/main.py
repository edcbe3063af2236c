import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Tuple

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from starlette.requests import HTTPConnection

from models import AlreadyExists, HasSubscribers, InvalidInput, NotFound, RegistryError, StorageFailure, TopicRegistry
from schemas import CreateTopicRequest, PublishRequest
from transport import ControlAnnouncer, DeliveryTransport, NullTransport, RelayOutcome, RelayResult, WebSocketHub
from utilities import (
    CONTROL_CHANNEL,
    DEFAULT_LAST_N,
    HOST,
    MAX_LAST_N,
    PORT,
    RELAY_ENABLED,
    channel_topic,
    generate_id,
    is_uuidish,
    make_ack,
    make_error,
    make_pong,
    topic_channel,
)
from utilities.log import setup as setup_logging

log = logging.getLogger(__name__)

router = APIRouter()

_STATUS_BY_CODE = {
    InvalidInput.code: 400,
    NotFound.code: 404,
    AlreadyExists.code: 409,
    HasSubscribers.code: 409,
    StorageFailure.code: 500,
}

# -------------- Dependencies --------------
def get_registry(conn: HTTPConnection) -> TopicRegistry:
    return conn.app.state.registry

def get_transport(conn: HTTPConnection) -> DeliveryTransport:
    return conn.app.state.transport

def get_announcer(conn: HTTPConnection) -> ControlAnnouncer:
    return conn.app.state.announcer

# -------------- Utilities --------------
def error_response(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    content = {"error": {"code": code, "message": message}}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)

async def publish_message(registry: TopicRegistry, transport: DeliveryTransport,
                          topic_name: str, message: dict) -> Tuple[dict, RelayResult]:
    """
    Store ``message`` on the topic, then hand it to the transport.

    Registry problems raise; relay problems come back in the RelayResult and
    never undo the stored message.
    """
    topic = await registry.get_topic(topic_name)
    if topic is None:
        raise NotFound(topic_name.strip())
    message = dict(message)
    if not message.get("id"):
        message["id"] = generate_id()
        log.info("generated id for message: %s", message["id"])
    if not is_uuidish(message["id"]):
        log.warning("message id %r does not look like a UUID; accepting it anyway", message["id"])
    if "payload" not in message:
        raise InvalidInput("message must have a payload field", topic.name)

    stored = await registry.add_message(topic.name, message)
    log.info("message stored in topic '%s': %s", topic.name, stored["id"])

    result = await transport.relay_message(topic.name, stored)
    if result.outcome is RelayOutcome.DELIVERED:
        log.info("message relayed on '%s' to %d listeners: %s", topic_channel(topic.name), result.listeners, stored["id"])
    elif result.outcome is RelayOutcome.NOT_CONFIGURED:
        log.warning("transport not configured; message %s stored but not broadcast", stored["id"])
    else:
        log.error("failed to broadcast message %s: %s", stored["id"], result.error)
    return stored, result

def parse_last_n(raw, zero_means_none: bool = False) -> Optional[int]:
    """Positive int or None (not supplied). Raises ValueError for anything else.

    Over the websocket 0 means "no replay", so ``zero_means_none`` maps it to None.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ValueError(raw)
    if isinstance(raw, float) and not raw.is_integer():
        raise ValueError(raw)
    value = int(raw)
    if value == 0 and zero_means_none:
        return None
    if value <= 0:
        raise ValueError(raw)
    return value

# -------------- WebSocket handling --------------
def _resolve_channel(payload: dict) -> Tuple[Optional[str], Optional[str]]:
    """(channel, topic name) named by a subscribe/unsubscribe frame."""
    topic_name = payload.get("topic")
    if isinstance(topic_name, str) and topic_name.strip():
        return topic_channel(topic_name.strip()), topic_name.strip()
    if payload.get("channel") == CONTROL_CHANNEL:
        return CONTROL_CHANNEL, None
    return None, None

@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket,
                             registry: TopicRegistry = Depends(get_registry),
                             transport: DeliveryTransport = Depends(get_transport)):
    await ws.accept()
    hub = transport if isinstance(transport, WebSocketHub) else None

    async def send(item: dict):
        await ws.send_text(json.dumps(item))

    try:
        while True:
            data = await ws.receive_text()
            try:
                payload = json.loads(data)
            except json.JSONDecodeError:
                await send(make_error(None, "BAD_REQUEST", "invalid json"))
                continue
            if not isinstance(payload, dict):
                await send(make_error(None, "BAD_REQUEST", "frame must be a json object"))
                continue
            # parse minimal fields
            typ = payload.get("type")
            request_id = payload.get("request_id")
            # ping
            if typ == "ping":
                await send(make_pong(request_id))
                continue

            if typ in ("subscribe", "unsubscribe"):
                channel, topic_name = _resolve_channel(payload)
                client_id = payload.get("client_id")
                if not channel or not client_id:
                    await send(make_error(request_id, "BAD_REQUEST", f"topic (or channel={CONTROL_CHANNEL}) and client_id required"))
                    continue
                if hub is None:
                    await send(make_error(request_id, "NOT_CONFIGURED", "live delivery is not enabled", topic_name))
                    continue
                if topic_name is not None and await registry.get_topic(topic_name) is None:
                    await send(make_error(request_id, "TOPIC_NOT_FOUND", f"topic {topic_name} not found", topic_name))
                    continue

            if typ == "subscribe":
                try:
                    last_n = parse_last_n(payload.get("last_n"), zero_means_none=True)
                except (TypeError, ValueError):
                    await send(make_error(request_id, "BAD_REQUEST", "last_n must be a positive integer", topic_name))
                    continue
                sub, replaced = await hub.subscribe(channel, client_id, ws)
                extra = {}
                try:
                    if topic_name is not None:
                        # a re-subscribe with the same client_id is still one subscriber
                        if replaced:
                            topic = await registry.get_topic(topic_name)
                            extra["subscribers"] = topic.subscribers if topic else 0
                        else:
                            extra["subscribers"] = await registry.increment_subscriber(topic_name)
                        # send last_n replay
                        if last_n:
                            history = await registry.get_history(topic_name, min(last_n, MAX_LAST_N))
                            extra["replayed"] = await hub.replay(sub, channel, history)
                except RegistryError as e:
                    # topic deleted between lookup and bookkeeping
                    await hub.unsubscribe(channel, client_id)
                    await send(make_error(request_id, e.code, e.message, topic_name))
                    continue
                await send(make_ack(request_id, topic_name or channel, **extra))
                continue

            if typ == "unsubscribe":
                removed = await hub.unsubscribe(channel, client_id)
                extra = {}
                if removed and topic_name is not None:
                    try:
                        extra["subscribers"] = await registry.decrement_subscriber(topic_name)
                    except NotFound:
                        pass
                await send(make_ack(request_id, topic_name or channel, **extra))
                continue

            if typ == "publish":
                topic_name = payload.get("topic")
                msg = payload.get("message")
                if not isinstance(topic_name, str) or not topic_name.strip() or not isinstance(msg, dict):
                    await send(make_error(request_id, "BAD_REQUEST", "topic and message required"))
                    continue
                try:
                    stored, result = await publish_message(registry, transport, topic_name, msg)
                except RegistryError as e:
                    await send(make_error(request_id, e.code, e.message, topic_name))
                    continue
                await send(make_ack(request_id, topic_name.strip(), message_id=stored["id"],
                                    broadcast=result.success, relay=result.outcome.value))
                continue

            # unknown type
            await send(make_error(request_id, "BAD_REQUEST", f"unknown type: {typ}"))
    except WebSocketDisconnect:
        pass
    except Exception:
        # Unexpected error; attempt to send internal error before closing
        log.exception("websocket handler crashed")
        try:
            await send(make_error(None, "INTERNAL", "server error"))
        except Exception:
            pass
    finally:
        # Clean up: remove subscriptions that reference this websocket
        if hub is not None:
            for channel in await hub.detach(ws):
                name = channel_topic(channel)
                if name is None:
                    continue
                try:
                    await registry.decrement_subscriber(name)
                except NotFound:
                    pass

# -------------- REST endpoints --------------

@router.post("/topics", status_code=201)
async def rest_create_topic(req: CreateTopicRequest,
                            registry: TopicRegistry = Depends(get_registry),
                            announcer: ControlAnnouncer = Depends(get_announcer)):
    try:
        topic = await registry.create_topic(req.name)
    except InvalidInput as e:
        return error_response(400, "INVALID_TOPIC", e.message)
    except AlreadyExists as e:
        return JSONResponse(status_code=409, content={"status": "exists", "topic": e.existing.name})
    announcer.announce("topic_created", topic.name)
    return {"status": "created", "topic": topic.name}

@router.delete("/topics/{name}")
async def rest_delete_topic(name: str,
                            registry: TopicRegistry = Depends(get_registry),
                            transport: DeliveryTransport = Depends(get_transport),
                            announcer: ControlAnnouncer = Depends(get_announcer)):
    name = name.strip()
    if not name:
        return error_response(400, "INVALID_TOPIC", "Topic name cannot be empty")
    try:
        await registry.delete_topic(name, if_idle=True)
    except NotFound:
        return JSONResponse(status_code=404, content={"status": "not_found", "topic": name})
    except HasSubscribers as e:
        return JSONResponse(status_code=409, content={
            "status": "has_subscribers",
            "topic": name,
            "subscribers": e.subscribers,
            "message": "Cannot delete topic with active subscribers. Unsubscribe all clients first.",
        })
    if isinstance(transport, WebSocketHub):
        await transport.drop_channel(topic_channel(name), name)
    announcer.announce("topic_deleted", name)
    return {"status": "deleted", "topic": name}

@router.get("/topics")
async def rest_list_topics(registry: TopicRegistry = Depends(get_registry)):
    return {"topics": await registry.list_topics()}

@router.post("/publish")
async def rest_publish(req: PublishRequest,
                       registry: TopicRegistry = Depends(get_registry),
                       transport: DeliveryTransport = Depends(get_transport)):
    if not isinstance(req.topic, str) or not req.topic.strip():
        return error_response(400, "INVALID_TOPIC", "Topic is required and must be a string")
    if not isinstance(req.message, dict):
        return error_response(400, "INVALID_MESSAGE", "Message is required and must be an object")
    topic_name = req.topic.strip()
    try:
        stored, result = await publish_message(registry, transport, topic_name, req.message)
    except NotFound:
        return error_response(404, "TOPIC_NOT_FOUND",
                              f"Topic '{topic_name}' does not exist. Create it first using POST /topics",
                              topic=topic_name)
    except InvalidInput as e:
        return error_response(400, "MISSING_PAYLOAD", e.message)

    out = {"status": "ok", "topic": topic_name, "message_id": stored["id"],
           "broadcast": result.success, "relay": result.outcome.value}
    if result.outcome is RelayOutcome.NOT_CONFIGURED:
        out["warning"] = "Message stored but not broadcast (delivery transport not configured)"
    elif result.outcome is RelayOutcome.FAILED:
        out["warning"] = f"Message stored but broadcast failed: {result.error}"
    if req.request_id:
        out["request_id"] = req.request_id
    return out

@router.get("/history")
async def rest_history(topic: Optional[str] = None, last_n: Optional[str] = None,
                       registry: TopicRegistry = Depends(get_registry)):
    if topic is None or not topic.strip():
        return error_response(400, "INVALID_TOPIC", "Topic query parameter is required and cannot be empty")
    topic = topic.strip()
    if await registry.get_topic(topic) is None:
        return error_response(404, "TOPIC_NOT_FOUND", f"Topic '{topic}' does not exist")

    requested = DEFAULT_LAST_N
    try:
        parsed = parse_last_n(last_n)
    except ValueError:
        return error_response(400, "INVALID_LAST_N", "last_n must be a positive integer")
    if parsed is not None:
        if parsed > MAX_LAST_N:
            log.warning("requested last_n=%d exceeds max (%d), capping", parsed, MAX_LAST_N)
        requested = min(parsed, MAX_LAST_N)

    messages = await registry.get_history(topic, requested)
    return {"topic": topic, "messages": messages, "count": len(messages), "requested": requested}

@router.get("/health")
async def rest_health(request: Request, registry: TopicRegistry = Depends(get_registry)):
    now = datetime.now(timezone.utc)
    uptime_sec = round((now - request.app.state.start_ts).total_seconds(), 3)
    topics = await registry.list_topics()
    return {"uptime_sec": uptime_sec, "topics": len(topics), "subscribers": sum(t["subscribers"] for t in topics)}

@router.get("/stats")
async def rest_stats(registry: TopicRegistry = Depends(get_registry)):
    return {"topics": await registry.get_stats()}

# -------------- App --------------

async def registry_error_handler(request: Request, exc: RegistryError):
    return error_response(_STATUS_BY_CODE.get(exc.code, 500), exc.code, exc.message, topic=exc.topic)

def create_app(registry: Optional[TopicRegistry] = None,
               transport: Optional[DeliveryTransport] = None) -> FastAPI:
    """Build the app. The registry and transport live for the lifespan of the app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        app.state.registry = registry if registry is not None else TopicRegistry()
        if transport is not None:
            app.state.transport = transport
        else:
            app.state.transport = WebSocketHub() if RELAY_ENABLED else NullTransport()
        app.state.announcer = ControlAnnouncer(app.state.transport)
        app.state.start_ts = datetime.now(timezone.utc)
        log.info("pub/sub relay started (transport=%s)", type(app.state.transport).__name__)
        try:
            yield
        finally:
            await app.state.announcer.drain()
            await app.state.transport.close()
            dropped = await app.state.registry.clear()
            log.warning("shutdown complete; %d topics and their messages were discarded (in-memory only)", dropped)

    app = FastAPI(title="In-memory Pub/Sub", lifespan=lifespan)
    app.include_router(router)
    app.add_exception_handler(RegistryError, registry_error_handler)
    return app

app = create_app()

def run():
    setup_logging()
    # uvicorn owns SIGINT/SIGTERM and runs the lifespan shutdown
    uvicorn.run(app, host=HOST, port=PORT, log_config=None)

if __name__ == "__main__":
    run()
