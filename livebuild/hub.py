"""Live reload notification hub."""

import asyncio
import itertools
import logging
import os
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set

from aiohttp import WSMsgType, web

from .debounce import RELOAD as RELOAD_CONCERN
from .debounce import DebounceScheduler
from .events import CONNECTED, REFRESH_CSS, RELOAD

logger = logging.getLogger(__name__)

COSMETIC_EXTENSIONS = frozenset({
    ".css",
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".svg",
    ".webp",
    ".ico",
    ".ttf",
    ".otf",
    ".woff",
    ".woff2",
})

RELOAD_JS = """
<script>
(function(){
  if (window.__LIVE_RELOAD__) return;
  window.__LIVE_RELOAD__ = true;
  const ws = new WebSocket(`ws://${location.host}/__ws`);
  ws.onmessage = (msg) => {
    if (msg.data === "reload") {
      location.reload();
    } else if (msg.data === "refreshcss") {
      const stamp = Date.now();
      document.querySelectorAll('link[rel="stylesheet"]').forEach((link) => {
        const url = new URL(link.href);
        url.searchParams.set("_lr", stamp);
        link.href = url.toString();
      });
      document.querySelectorAll("img").forEach((img) => {
        const url = new URL(img.src);
        url.searchParams.set("_lr", stamp);
        img.src = url.toString();
      });
    }
  };
})();
</script>
"""


def classify(paths: Iterable[str]) -> str:
    """Pick the message for a batch: the more disruptive action wins."""
    paths = list(paths)
    if paths and all(os.path.splitext(p)[1].lower() in COSMETIC_EXTENSIONS for p in paths):
        return REFRESH_CSS
    return RELOAD


def inject_client(html: str) -> str:
    if "__LIVE_RELOAD__" in html:
        return html
    if "</body>" in html:
        return html.replace("</body>", RELOAD_JS + "\n</body>", 1)
    return html + RELOAD_JS


@dataclass(eq=False)
class Client:
    id: int
    send: Callable[[str], Awaitable[None]]


class LiveReloadHub:
    """
    Track live reload clients and fan out one message per change batch.

    Change paths are recorded as they arrive, committed as a batch when a
    build succeeds, and delivered when the reload concern fires. New clients
    are greeted by that same flush, so a client that connects mid-burst gets
    ``connected`` immediately followed by the batch message.
    """

    def __init__(self, scheduler: DebounceScheduler, delay: float = 2.0, concern: str = RELOAD_CONCERN):
        self.scheduler = scheduler
        self.concern = concern
        scheduler.register(concern, self.flush, delay)

        self._ids = itertools.count(1)
        self._clients: Dict[int, Client] = {}
        self._greet: Set[int] = set()
        self._recorded: List[str] = []
        self._batch: List[str] = []
        self._sockets: Set[web.WebSocketResponse] = set()

    @property
    def clients(self) -> List[Client]:
        return list(self._clients.values())

    def add(self, send: Callable[[str], Awaitable[None]]) -> Client:
        client = Client(next(self._ids), send)
        self._clients[client.id] = client
        self._greet.add(client.id)
        logger.info("client connected")
        self.scheduler.notify(self.concern)
        return client

    def remove(self, client: Client) -> None:
        if self._clients.pop(client.id, None) is not None:
            logger.debug(f"client {client.id} disconnected")
        self._greet.discard(client.id)

    def record(self, path: str) -> None:
        """Remember a changed path for the next committed batch."""
        self._recorded.append(path)

    def take(self) -> List[str]:
        """Hand over the paths recorded so far; later changes stay pending."""
        taken, self._recorded = self._recorded, []
        return taken

    def restore(self, paths: Iterable[str]) -> None:
        """Put taken paths back, ahead of anything recorded since."""
        self._recorded[:0] = list(paths)

    def commit(self, paths: Optional[Iterable[str]] = None) -> None:
        """Close a batch of changes and schedule delivery.

        Without ``paths`` everything recorded so far is committed.
        """
        batch = self.take() if paths is None else list(paths)
        if not batch:
            return
        self._batch.extend(batch)
        self.scheduler.notify(self.concern)

    async def flush(self) -> None:
        batch, self._batch = self._batch, []
        message = classify(batch) if batch else None
        if message:
            logger.info(f"HMR change detected ({len(batch)} path(s)), sending {message}")

        # snapshot: removals during the fan-out do not disturb it
        targets = list(self._clients.values())
        await asyncio.gather(*(self._deliver(c, message) for c in targets))

    async def _deliver(self, client: Client, message: Optional[str]) -> None:
        outgoing = []
        if client.id in self._greet:
            self._greet.discard(client.id)
            outgoing.append(CONNECTED)
        if message:
            outgoing.append(message)

        for text in outgoing:
            if client.id not in self._clients:
                return
            try:
                await client.send(text)
            except Exception as e:
                logger.debug(f"dropping client {client.id}: {e!r}")
                self.remove(client)
                return

    # -------- WebSocket --------
    async def websocket_handler(self, request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        client = self.add(ws.send_str)
        self._sockets.add(ws)

        try:
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    break
        finally:
            self._sockets.discard(ws)
            self.remove(client)
        return ws

    async def close(self) -> None:
        for ws in list(self._sockets):
            await ws.close()
        self._clients.clear()
        self._greet.clear()
