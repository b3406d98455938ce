"""
Shared helpers for the test bench suite.

No network. Outbound chain hops go through httpx transports: a MockTransport
when a test wants to script the child's answer, or ClusterTransport when a
test wants several real instances talking to each other in-process.
"""
import asyncio

import httpx
import pytest

from testbench.app import create_app
from testbench.config import Settings

BASE_URL = "http://instance"


def make_settings(**overrides):
    values = {"instance_id": 1, "base_url": BASE_URL, "instance_port": 3000}
    values.update(overrides)
    return Settings(**values)


def host_for(instance_id):
    return "instance" if instance_id == 0 else f"instance-{instance_id}"


class ClusterTransport(httpx.AsyncBaseTransport):
    """Routes each instance host to its own app. Unknown hosts refuse."""

    def __init__(self):
        self.apps = {}
        self.calls = []

    async def handle_async_request(self, request):
        host = request.url.host
        self.calls.append((host, request.url.params.get("seq")))
        app = self.apps.get(host)
        if app is None:
            raise httpx.ConnectError(f"Connection refused: {host}", request=request)
        return await httpx.ASGITransport(app=app).handle_async_request(request)


def run_chain(instance_ids, entry, seq=None, trace_id=None, discipline="search"):
    """Start instances `instance_ids`, send one /chain request to `entry`.

    Returns (response, calls) where calls lists every (host, seq) hit,
    the initial request included.
    """
    async def go():
        transport = ClusterTransport()
        async with httpx.AsyncClient(transport=transport) as client:
            for instance_id in instance_ids:
                settings = make_settings(instance_id=instance_id, discipline=discipline)
                transport.apps[host_for(instance_id)] = create_app(settings, client=client)
            params = {}
            if seq is not None:
                params["seq"] = seq
            if trace_id is not None:
                params["traceId"] = trace_id
            url = f"http://{host_for(entry)}:3000/chain"
            response = await client.get(url, params=params)
            return response, transport.calls

    return asyncio.run(go())


def walk(body):
    """Every response in a chain tree, root first."""
    yield body
    for child in body.get("childResponses", []):
        yield from walk(child)


@pytest.fixture
def settings():
    return make_settings()
