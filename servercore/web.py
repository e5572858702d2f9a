"""Minimal HTTP request parsing, routing and controllers."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

__all__ = [
    "HttpParseError",
    "HttpRequest",
    "HttpResponse",
    "parse_request",
    "HttpController",
    "ControllerRegistry",
    "HelloController",
    "HttpDispatcher",
]


class HttpParseError(ValueError):
    """Raised when raw data holds no request line."""


@dataclass
class HttpRequest:
    method: str = ""
    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""


@dataclass
class HttpResponse:
    status_code: int = 200
    reason: str = "OK"
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""


HttpHandler = Callable[[HttpRequest], HttpResponse]


def parse_request(raw: str | bytes) -> HttpRequest:
    """Parse a raw HTTP request.

    Headers end at a line holding only a carriage return; every later line
    becomes part of the body, each followed by a newline.
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8", errors="replace")

    lines = raw.split("\n")
    if lines[-1] == "":
        lines.pop()
    if not lines:
        raise HttpParseError("empty request")

    request = HttpRequest()
    words = lines[0].split()
    if words:
        request.method = words[0]
    if len(words) > 1:
        request.url = words[1]

    rest = iter(lines[1:])
    for line in rest:
        if line == "\r":
            break
        key, sep, value = line.partition(":")
        if not sep:
            continue
        value = value.removeprefix(" ").removesuffix("\r")
        request.headers[key] = value

    request.body = "".join(line + "\n" for line in rest)
    return request


class HttpController(ABC):
    """A group of routes registered together."""

    @abstractmethod
    def register_routes(self, registry: ControllerRegistry) -> None:
        """Register this controller's handlers with ``registry``."""


class ControllerRegistry:
    """Maps a method and path to a handler."""

    def __init__(self) -> None:
        self._handlers: dict[tuple[str, str], HttpHandler] = {}
        self._controllers: list[HttpController] = []

    def register_handler(self, method: str, path: str, handler: HttpHandler) -> None:
        self._handlers[(method, path)] = handler

    def find_handler(self, method: str, path: str) -> HttpHandler | None:
        return self._handlers.get((method, path))

    def register_controller(self, controller: HttpController) -> None:
        controller.register_routes(self)
        self._controllers.append(controller)


class HelloController(HttpController):
    """Sample routes: a greeting, an echo and a JSON reply."""

    def register_routes(self, registry: ControllerRegistry) -> None:
        registry.register_handler("GET", "/hello", self._hello)
        registry.register_handler("POST", "/echo", self._echo)
        registry.register_handler("GET", "/json", self._json)

    @staticmethod
    def _hello(request: HttpRequest) -> HttpResponse:
        return HttpResponse(body="Hello, IOCP HTTP!", headers={"Content-Type": "text/plain"})

    @staticmethod
    def _echo(request: HttpRequest) -> HttpResponse:
        return HttpResponse(body="You sent: " + request.body, headers={"Content-Type": "text/plain"})

    @staticmethod
    def _json(request: HttpRequest) -> HttpResponse:
        return HttpResponse(
            body=json.dumps({"message": "This is JSON"}),
            headers={"Content-Type": "application/json"},
        )


class HttpDispatcher:
    """Sends a request to its handler, or answers 404."""

    def __init__(self, registry: ControllerRegistry) -> None:
        self._registry = registry

    def dispatch(self, request: HttpRequest) -> HttpResponse:
        handler = self._registry.find_handler(request.method, request.url)
        if handler is not None:
            return handler(request)
        return HttpResponse(
            status_code=404,
            reason="Not Found",
            body="404 Not Found",
            headers={"Content-Type": "text/plain"},
        )