"""Background worker and its message protocol.

Requests and replies are plain JSON-serialisable dicts:

    {"type": "SAMPLE_DATA", "data": {"nodes": [...], "edges": [...]},
     "settings": {"nodeLimit": ..., "edgeLimit": ..., "importantNodesPercent": ...},
     "token": 7}
    -> {"type": "SAMPLED_DATA", "data": {"nodes": [...], "edges": [...]}, "token": 7}

    {"type": "CLUSTER_DATA", "data": {"nodes": [...]}, "token": 8}
    -> {"type": "CLUSTERED_DATA", "data": {"nodes": [...], "edges": []}, "token": 8}

Any failure produces {"type": "ERROR", "message": ...}. The request token,
when present, is echoed so the owner can recognise stale replies.

GraphWorker runs the handler on a single background thread. Requests are
processed one at a time in submission order, and each produces exactly one
reply on the worker's outbox.
"""

import logging
import queue
import random
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from enum import Enum
from typing import Any

from graphlod.models import SamplingSettings
from graphlod.services.clustering import DEFAULT_GRID_SIZE, cluster_nodes
from graphlod.services.sampling import (
    DEFAULT_EDGE_LIMIT,
    DEFAULT_IMPORTANT_PERCENT,
    DEFAULT_NODE_LIMIT,
    sample_edges,
    sample_nodes,
)
from graphlod.services.validation import validate_edges, validate_nodes

logger = logging.getLogger("graphlod.worker")

Message = dict[str, Any]


class MessageType(str, Enum):
    """Types of protocol messages."""
    SAMPLE_DATA = "SAMPLE_DATA"
    SAMPLED_DATA = "SAMPLED_DATA"
    CLUSTER_DATA = "CLUSTER_DATA"
    CLUSTERED_DATA = "CLUSTERED_DATA"
    ERROR = "ERROR"


REQUEST_TYPES = {MessageType.SAMPLE_DATA.value, MessageType.CLUSTER_DATA.value}


class TransportError(Exception):
    """Raised when the background worker cannot start or accept a message"""


class StaleResultError(Exception):
    """Raised for a reply to a request that has since been superseded"""


def error_reply(message: str, token: int | None = None) -> Message:
    reply: Message = {"type": MessageType.ERROR.value, "message": message}
    if token is not None:
        reply["token"] = token
    return reply


def _reply(type_: MessageType, data: dict[str, Any], token: int | None) -> Message:
    reply: Message = {"type": type_.value, "data": data}
    if token is not None:
        reply["token"] = token
    return reply


def _setting(settings: dict[str, Any], key: str, default: int) -> Any:
    value = settings.get(key)
    return default if value is None else value


def handle_message(message: Any, rng: random.Random | None = None, grid_size: float = DEFAULT_GRID_SIZE) -> Message:
    """Process one request message and build its reply.

    Args:
        message: The request message
        rng: Source of randomness for node sampling
        grid_size: Cell size for CLUSTER_DATA requests

    Returns:
        Exactly one reply message
    """
    if not isinstance(message, dict):
        return error_reply("Invalid message")

    token = message.get("token")
    msg_type = message.get("type")
    if msg_type not in REQUEST_TYPES:
        return error_reply("Unknown message type", token)

    data = message.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("nodes"), list) or not data["nodes"]:
        logger.error(f"Invalid or empty data received for {msg_type}")
        return error_reply("Invalid data format", token)

    nodes, discarded = validate_nodes(data["nodes"])
    logger.debug(f"{msg_type}: {len(nodes)} valid nodes out of {len(data['nodes'])}")
    if not nodes:
        return error_reply("No valid nodes found in data", token)

    try:
        if msg_type == MessageType.SAMPLE_DATA.value:
            settings = message.get("settings") or {}
            if not isinstance(settings, dict):
                settings = {}
            sampled = sample_nodes(
                nodes,
                _setting(settings, "nodeLimit", DEFAULT_NODE_LIMIT),
                _setting(settings, "importantNodesPercent", DEFAULT_IMPORTANT_PERCENT),
                rng=rng,
            )
            raw_edges = data.get("edges")
            edges, _ = validate_edges(
                raw_edges if isinstance(raw_edges, list) else [],
                {n.id for n in sampled},
            )
            edges = sample_edges(edges, sampled, _setting(settings, "edgeLimit", DEFAULT_EDGE_LIMIT))
            logger.info(f"Sampled data size: {len(sampled)} nodes, {len(edges)} edges")
            return _reply(
                MessageType.SAMPLED_DATA,
                {"nodes": [n.to_dict() for n in sampled], "edges": [e.to_dict() for e in edges]},
                token,
            )

        clusters = cluster_nodes(nodes, grid_size)
        logger.info(f"Created {len(clusters)} clusters")
        return _reply(
            MessageType.CLUSTERED_DATA,
            {"nodes": [c.to_dict() for c in clusters], "edges": []},
            token,
        )
    except ValueError as e:
        logger.warning(f"{msg_type} failed: {e}")
        return error_reply(str(e), token)


def build_sample_request(nodes: list, edges: list, settings: SamplingSettings, token: int) -> Message:
    return {
        "type": MessageType.SAMPLE_DATA.value,
        "data": {"nodes": nodes, "edges": edges},
        "settings": settings.to_message(),
        "token": token,
    }


def build_cluster_request(nodes: list, token: int) -> Message:
    return {
        "type": MessageType.CLUSTER_DATA.value,
        "data": {"nodes": nodes},
        "token": token,
    }


class GraphWorker:
    """Single-consumer background execution context.

    ``post_message`` hands a request to the worker thread and returns
    immediately; the reply is queued on the outbox and collected by the
    owning thread with ``poll_replies``.
    """

    def __init__(
        self,
        handler: Callable[[Message], Message] = handle_message,
        executor: Executor | None = None,
    ):
        self._handler = handler
        self._executor = executor
        self._replies: queue.Queue[Message] = queue.Queue()
        self._started = executor is not None

    def start(self) -> "GraphWorker":
        """Start the worker thread.

        Raises:
            TransportError: If the executor cannot be created
        """
        if self._started:
            return self
        try:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="graphlod-worker")
        except (RuntimeError, OSError) as e:
            raise TransportError(f"Worker failed to start: {e}") from e
        self._started = True
        logger.info("Graph worker started")
        return self

    @property
    def running(self) -> bool:
        return self._started and self._executor is not None

    def post_message(self, message: Message) -> Future:
        """Submit a request; its reply will appear on the outbox.

        Raises:
            TransportError: If the worker is not running
        """
        if not self.running:
            raise TransportError("Worker is not running")
        try:
            return self._executor.submit(self._run, message)
        except RuntimeError as e:
            raise TransportError(f"Worker rejected message: {e}") from e

    def _run(self, message: Message) -> Message:
        # The reply is queued before the future resolves
        try:
            reply = self._handler(message)
        except Exception as e:
            logger.error(f"Worker handler raised {type(e).__name__}: {e}")
            token = message.get("token") if isinstance(message, dict) else None
            reply = error_reply(str(e), token)
        self._replies.put(reply)
        return reply

    def poll_replies(self) -> list[Message]:
        """Drain every reply delivered so far without blocking."""
        replies = []
        while True:
            try:
                replies.append(self._replies.get_nowait())
            except queue.Empty:
                return replies

    def terminate(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        self._started = False
        logger.info("Graph worker terminated")
