"""
Shared helpers for building sessions and fake network boundaries.
"""
import asyncio
from typing import Any, Callable, Dict

import httpx


def make_session(**overrides) -> Dict[str, Any]:
    """A valid session payload; any field can be overridden."""
    session = {
        'scale': 'C Major',
        'practice_type': 'Right Hand',
        'octaves': 2,
        'bpm': 70,
        'duration': 30,
    }
    session.update(overrides)
    return session


def timestamp(minute: int, day: int = 19) -> str:
    """Deterministic UTC timestamps that sort in minute order."""
    return f"2026-10-{day:02d}T10:{minute:02d}:00.000Z"


def flask_handler(app) -> Callable[[httpx.Request], httpx.Response]:
    """Serve httpx requests from a Flask app's test client."""
    client = app.test_client()

    def handler(request: httpx.Request) -> httpx.Response:
        response = client.open(
            request.url.path,
            method=request.method,
            query_string=request.url.query.decode(),
            data=request.content,
            headers={'Content-Type': request.headers.get('content-type', 'application/json')},
        )
        return httpx.Response(response.status_code, content=response.get_data(),
                              headers={'Content-Type': response.content_type})

    return handler


def flask_transport(app) -> httpx.MockTransport:
    return httpx.MockTransport(flask_handler(app))


def unreachable_transport() -> httpx.MockTransport:
    """Every request fails as if the server were down."""
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    return httpx.MockTransport(handler)


def status_transport(status_code: int) -> httpx.MockTransport:
    """Every request gets the same error status."""
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={'error': 'Internal server error'})

    return httpx.MockTransport(handler)


def recording_transport(calls: list) -> httpx.MockTransport:
    """Records requests and answers 500, for asserting no call was made."""
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500, json={'error': 'unexpected call'})

    return httpx.MockTransport(handler)


def stalled_transport(app, stall_first: int = 1) -> httpx.MockTransport:
    """
    The first stall_first requests hang forever; later ones go to the Flask app.

    Requests that reached the server are listed on the transport's seen attribute.
    """
    bridge = flask_handler(app)
    seen = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if len(seen) <= stall_first:
            await asyncio.Event().wait()
        return bridge(request)

    transport = httpx.MockTransport(handler)
    transport.seen = seen
    return transport
