"""
Approval channel WebSocket server.

Local processes connect to ``ws://127.0.0.1:<port>/?key=<hex>``. Only
loopback peers presenting the current connection key are accepted; any
other connection is closed before the handshake completes, without an
explanation.
"""
import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set

import uvicorn
from fastapi import APIRouter, FastAPI, WebSocket, WebSocketDisconnect
from starlette.status import WS_1001_GOING_AWAY, WS_1008_POLICY_VIOLATION

from exceptions import ConnectionRejected, KeyboardAgentError
from settings import LOG_LEVEL, PRIMARY_PROVIDER, WS_HOST, WS_PORT
from .approvals import ApprovalQueue
from .key_manager import ConnectionKeyManager
from .models import ApprovalMessage

logger = logging.getLogger(__name__)

LOOPBACK_ADDRESSES = frozenset({"127.0.0.1", "::1", "::ffff:127.0.0.1"})


def is_loopback_address(host: Optional[str]) -> bool:
    return host in LOOPBACK_ADDRESSES


def _now_ms() -> int:
    return int(time.time() * 1000)


class ApprovalChannel:
    """Connected clients, inbound message routing and decision broadcast"""

    def __init__(
        self,
        queue: ApprovalQueue,
        key_manager: ConnectionKeyManager,
        oauth=None,
        primary_provider: str = PRIMARY_PROVIDER,
        trusted_hosts: Iterable[str] = LOOPBACK_ADDRESSES,
    ):
        self.queue = queue
        self.key_manager = key_manager
        self.oauth = oauth
        self.primary_provider = primary_provider
        self.trusted_hosts = frozenset(trusted_hosts)
        self.clients: Set[WebSocket] = set()
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    # Connections
    def check_connection(self, host: Optional[str], key: Optional[str]):
        """Raise ConnectionRejected unless the peer may connect"""
        if host not in self.trusted_hosts:
            raise ConnectionRejected("non-local origin", host)
        if not self.key_manager.validate(key):
            raise ConnectionRejected("invalid key", host)

    async def connect(self, websocket: WebSocket) -> bool:
        """Gate and accept a connection

        Returns:
            True if the connection was accepted
        """
        host = websocket.client.host if websocket.client else None
        try:
            self.check_connection(host, websocket.query_params.get("key"))
        except ConnectionRejected as e:
            logger.warning(str(e))
            await websocket.close(code=WS_1008_POLICY_VIOLATION)
            return False

        await websocket.accept()
        self.clients.add(websocket)
        logger.info(f"Channel client connected ({len(self.clients)} total)")
        return True

    def disconnect(self, websocket: WebSocket):
        if websocket in self.clients:
            self.clients.discard(websocket)
            logger.info(f"Channel client disconnected ({len(self.clients)} remaining)")

    async def close_all(self):
        """Close every client connection on shutdown"""
        for websocket in list(self.clients):
            try:
                await websocket.close(code=WS_1001_GOING_AWAY)
            except RuntimeError as e:
                logger.debug(f"Client already closed: {e}")
            self.disconnect(websocket)

    # Outbound
    async def send(self, websocket: WebSocket, payload: Dict[str, Any]):
        try:
            await websocket.send_json(payload)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Dropping client after failed send: {e}")
            self.disconnect(websocket)

    async def broadcast(self, payload: Dict[str, Any]):
        """Send a payload to every connected client"""
        for websocket in list(self.clients):
            await self.send(websocket, payload)

    # Decisions
    async def decide(self, message_id: str, status: str, feedback: Optional[str] = None) -> Optional[ApprovalMessage]:
        """Decide a message and broadcast the result after the mutation

        Returns:
            The decided message, or None for unknown ids
        """
        payload = self.queue.decide(message_id, status, feedback)
        if payload is not None:
            await self.broadcast(payload)
        return self.queue.get(message_id)

    def decide_threadsafe(self, message_id: str, status: str, feedback: Optional[str] = None):
        """Schedule a decision from another thread onto the server's loop"""
        if self.loop is None:
            raise RuntimeError("Channel server is not running")
        future = asyncio.run_coroutine_threadsafe(self.decide(message_id, status, feedback), self.loop)
        return future.result(timeout=30)

    # Inbound
    async def handle_frame(self, websocket: WebSocket, raw: str):
        try:
            message = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring malformed channel frame: {e}")
            return
        if not isinstance(message, dict):
            logger.warning("Ignoring non-object channel frame")
            return

        message_type = message.get("type")
        if message_type == "request-token":
            await self.send(websocket, await self.auth_token_response(message.get("requestId")))
        elif message_type == "request-provider-token":
            await self.send(websocket, await self.provider_token_response(
                message.get("providerId"), message.get("requestId")
            ))
        elif message_type == "request-provider-status":
            await self.send(websocket, self.provider_status_response(message.get("requestId")))
        else:
            stored = self.queue.submit(message)
            if stored is not None and self.queue.should_auto_approve(stored):
                logger.info(f"Auto-approving {stored.id} (risk level {stored.risk_level})")
                await self.decide(stored.id, "approved")

    async def auth_token_response(self, request_id: Optional[str] = None) -> Dict[str, Any]:
        """Answer ``request-token`` with the primary provider's token"""
        token = None
        user = None
        if self.oauth is not None:
            token = await self.oauth.get_valid_token(self.primary_provider)
            if token:
                tokens = self.oauth.storage.load_tokens(self.primary_provider)
                user = tokens.user if tokens else None
        return {
            "type": "auth-token",
            "token": token,
            "authenticated": bool(token),
            "user": user,
            "timestamp": _now_ms(),
            "requestId": request_id,
        }

    async def provider_token_response(self, provider_id: Optional[str], request_id: Optional[str] = None) -> Dict[str, Any]:
        """Answer ``request-provider-token`` for a specific provider"""
        if not provider_id:
            return {
                "type": "provider-auth-token",
                "error": "Provider ID is required",
                "timestamp": _now_ms(),
                "requestId": request_id,
            }

        provider_id = provider_id.lower()
        if self.oauth is None:
            token, user, provider_name = None, None, provider_id
        else:
            try:
                token = await self.oauth.get_valid_token(provider_id)
            except KeyboardAgentError as e:
                return {
                    "type": "provider-auth-token",
                    "providerId": provider_id,
                    "error": f"Failed to get token: {e}",
                    "timestamp": _now_ms(),
                    "requestId": request_id,
                }
            tokens = self.oauth.storage.load_tokens(provider_id) if token else None
            user = tokens.user if tokens else None
            provider = self.oauth.registry.find_provider(provider_id)
            provider_name = provider.name if provider else provider_id

        return {
            "type": "provider-auth-token",
            "providerId": provider_id,
            "token": token,
            "authenticated": bool(token),
            "user": user,
            "providerName": provider_name,
            "timestamp": _now_ms(),
            "requestId": request_id,
        }

    def provider_status_response(self, request_id: Optional[str] = None) -> Dict[str, Any]:
        """Answer ``request-provider-status`` with the token names available"""
        statuses = self.oauth.provider_status() if self.oauth is not None else []
        available = [
            f"KEYBOARD_PROVIDER_USER_TOKEN_FOR_{s['provider_id'].upper()}"
            for s in statuses
            if s["authenticated"]
        ]
        return {
            "type": "user-tokens-available",
            "tokensAvailable": available,
            "timestamp": _now_ms(),
            "requestId": request_id,
        }


def build_app(
    channel: ApprovalChannel,
    on_startup: Optional[Callable[[], Awaitable[Any]]] = None,
) -> FastAPI:
    """Create the FastAPI application serving the channel"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        channel.loop = asyncio.get_running_loop()
        if on_startup is not None:
            await on_startup()
        yield
        await channel.close_all()
        channel.loop = None

    app = FastAPI(title="Keyboard Agent Channel", version="1.0.0", lifespan=lifespan)
    router = APIRouter()

    @router.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "timestamp": time.time(),
            "clients": len(channel.clients),
            "pending": channel.queue.pending_count,
        }

    @router.websocket("/")
    async def channel_endpoint(websocket: WebSocket):
        if not await channel.connect(websocket):
            return
        try:
            while True:
                raw = await websocket.receive_text()
                await channel.handle_frame(websocket, raw)
        except WebSocketDisconnect:
            pass
        finally:
            channel.disconnect(websocket)

    app.include_router(router)
    logger.debug("Channel application initialized")
    return app


class ChannelServer:
    """Channel server wrapper for CLI control"""

    def __init__(self, app: FastAPI, port: int = WS_PORT, host: str = WS_HOST):
        self.app = app
        self.port = port
        self.host = host
        self.server: Optional[uvicorn.Server] = None
        self.config: Optional[uvicorn.Config] = None

    def _build_server(self) -> uvicorn.Server:
        self.config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level=LOG_LEVEL,
            access_log=False,  # Reduce noise in CLI
        )
        self.server = uvicorn.Server(self.config)
        return self.server

    def run(self):
        """Run the channel server (blocking)"""
        logger.info(f"Starting approval channel on ws://{self.host}:{self.port}")
        self._build_server().run()

    async def serve(self):
        """Run the channel server on the current event loop"""
        logger.info(f"Starting approval channel on ws://{self.host}:{self.port}")
        await self._build_server().serve()

    def stop(self):
        """Stop the channel server"""
        if self.server:
            self.server.should_exit = True
