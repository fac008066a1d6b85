"""Static file server for build output, sharing its port with live reload."""

import logging
import os
from typing import Optional
from urllib.parse import unquote

from aiohttp import web

from .errors import RequestResolutionFailure
from .hub import LiveReloadHub, inject_client

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

MIME_TYPES = {
    ".htm": "text/html",
    ".html": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".json": "application/json",
    ".map": "application/json",
    ".svg": "image/svg+xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".ico": "image/x-icon",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".txt": "text/plain",
}


def resolve_path(root: str, request_path: str, default_document: str = "index.html") -> str:
    """
    Map a URL path onto a regular file under ``root``.

    The result is canonical (symlinks resolved) and guaranteed to live under
    the canonical root; anything else raises RequestResolutionFailure.
    """
    relative = unquote(request_path or "/")
    if "\x00" in relative:
        raise RequestResolutionFailure("NUL byte in path")
    if relative in ("", "/"):
        relative = "/" + default_document

    real_root = os.path.realpath(root)
    candidate = os.path.realpath(os.path.join(real_root, relative.lstrip("/\\")))

    if os.path.commonpath([real_root, candidate]) != real_root:
        raise RequestResolutionFailure(f"{request_path} escapes the output root")
    if not os.path.isfile(candidate):
        raise RequestResolutionFailure(f"{request_path} is not a file")
    return candidate


def content_type(path: str) -> Optional[str]:
    return MIME_TYPES.get(os.path.splitext(path)[1].lower())


class StaticFileServer:
    def __init__(
        self,
        root: str,
        hub: Optional[LiveReloadHub] = None,
        default_document: str = "index.html",
        serve_files: bool = True,
    ):
        self.root = root
        self.hub = hub
        self.default_document = default_document
        self.serve_files = serve_files

    def is_upgrade(self, request: web.Request) -> bool:
        return self.hub is not None and request.headers.get("Upgrade", "").lower() == "websocket"

    # -------- HTTP handler --------
    async def file_handler(self, request: web.Request) -> web.StreamResponse:
        if self.is_upgrade(request):
            return await self.hub.websocket_handler(request)
        if not self.serve_files:
            return web.Response(status=404)

        try:
            file_path = resolve_path(self.root, request.raw_path.split("?", 1)[0], self.default_document)
            size = os.stat(file_path).st_size
        except (RequestResolutionFailure, OSError) as e:
            logger.debug(f"404 {request.path}: {e}")
            return web.Response(status=404)

        mime = content_type(file_path)

        if self.hub is not None and mime == "text/html":
            with open(file_path, "r", encoding="utf-8", errors="replace") as f:
                html = inject_client(f.read())
            return web.Response(body=html.encode("utf-8"), headers={"Content-Type": mime})

        response = web.StreamResponse(status=200)
        response.content_length = size
        if mime:
            response.headers["Content-Type"] = mime
        await response.prepare(request)

        if request.method != "HEAD":
            with open(file_path, "rb") as f:
                chunk = f.read(CHUNK_SIZE)
                while chunk:
                    await response.write(chunk)
                    chunk = f.read(CHUNK_SIZE)
        await response.write_eof()
        return response

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/{path:.*}", self.file_handler)
        return app
