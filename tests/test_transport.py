from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable

import pytest
from aiohttp import test_utils, web

from fakes import GROUP, make_services
from wabot.models import MessageRef
from wabot.transport import ConnectionClosedError, GatewayTransport, TransportError


def _gateway_app(seen: list[dict[str, Any]], delay_sec: float = 0.0) -> web.Application:
    async def send_text(request: web.Request) -> web.Response:
        await asyncio.sleep(delay_sec)
        seen.append({"auth": request.headers.get("Authorization", ""), "body": await request.json()})
        return web.json_response({"id": "wamid-1"})

    async def delete(request: web.Request) -> web.Response:
        return web.json_response({"error": "forbidden"}, status=403)

    app = web.Application()
    app.router.add_post("/messages/text", send_text)
    app.router.add_post("/messages/delete", delete)
    return app


def _with_gateway(app: web.Application, timeout_sec: float, body: Callable[[GatewayTransport], Awaitable[Any]]) -> Any:
    async def scenario() -> Any:
        server = test_utils.TestServer(app)
        await server.start_server()
        transport = GatewayTransport(str(server.make_url("")), token="s3cret", timeout_sec=timeout_sec)
        try:
            return await body(transport)
        finally:
            await transport.close()
            await server.close()

    return asyncio.run(scenario())


def test_send_text_posts_payload_with_bearer_token() -> None:
    seen: list[dict[str, Any]] = []

    message_id = _with_gateway(
        _gateway_app(seen),
        5.0,
        lambda transport: transport.send_text(GROUP, "hello", ["a@s.whatsapp.net"]),
    )

    assert message_id == "wamid-1"
    assert seen[0]["auth"] == "Bearer s3cret"
    assert seen[0]["body"] == {"chatId": GROUP, "text": "hello", "mentions": ["a@s.whatsapp.net"]}


def test_http_error_status_raises_transport_error() -> None:
    ref = MessageRef(chat_id=GROUP, message_id="m1")
    with pytest.raises(TransportError, match="HTTP 403"):
        _with_gateway(_gateway_app([]), 5.0, lambda transport: transport.delete_message(ref))


def test_slow_gateway_raises_transport_error_not_timeout() -> None:
    with pytest.raises(TransportError, match="timed out") as info:
        _with_gateway(_gateway_app([], delay_sec=1.0), 0.1, lambda transport: transport.send_text(GROUP, "hi"))
    assert not isinstance(info.value, ConnectionClosedError)


def test_services_send_text_absorbs_gateway_timeout(tmp_path: Path) -> None:
    services = make_services(tmp_path)

    async def body(transport: GatewayTransport) -> str:
        services.transport = transport
        return await services.send_text(GROUP, "hi")

    assert _with_gateway(_gateway_app([], delay_sec=1.0), 0.1, body) == ""
    assert services.logger.recent(1)[0]["event"] == "transport.send_failed"
