import httpx
import pytest

from clawchat.status import GatewayStatus, check_gateway_status, render_status_markdown


class TestCheckGatewayStatus:
    @pytest.mark.asyncio
    async def test_healthy_with_details(self, client, gateway):
        gateway.routes["/health"] = httpx.Response(200, json={"version": "2.1.0", "sessions": 3})

        status = await check_gateway_status(client)

        assert status.healthy
        assert status.version == "2.1.0"
        assert status.sessions == 3
        assert status.latency_ms is not None
        assert [r.url.path for r in gateway.requests] == ["/health"]

    @pytest.mark.asyncio
    async def test_health_without_json_body(self, client, gateway):
        gateway.routes["/health"] = httpx.Response(200, text="OK")

        status = await check_gateway_status(client)

        assert status.healthy
        assert status.version is None

    @pytest.mark.asyncio
    async def test_falls_back_to_models(self, client, gateway):
        gateway.routes["/v1/models"] = httpx.Response(200, json={"data": []})

        status = await check_gateway_status(client)

        assert status.healthy
        assert [r.url.path for r in gateway.requests] == ["/health", "/v1/models"]

    @pytest.mark.asyncio
    async def test_unhealthy_reports_http_status(self, client, gateway):
        gateway.routes["/v1/models"] = httpx.Response(401, text="unauthorized")

        status = await check_gateway_status(client)

        assert not status.healthy
        assert status.error == "HTTP 401"

    @pytest.mark.asyncio
    async def test_unreachable(self, client, gateway):
        gateway.routes["/health"] = httpx.ConnectError("connection refused")
        gateway.routes["/v1/models"] = httpx.ConnectError("connection refused")

        status = await check_gateway_status(client)

        assert not status.healthy
        assert status.error == "connection refused"


class TestRenderStatusMarkdown:
    def test_healthy(self):
        text = render_status_markdown(
            GatewayStatus(healthy=True, endpoint="http://x", agent_id="main", latency_ms=12)
        )
        assert "Connected" in text
        assert "12ms" in text
        assert "Troubleshooting" not in text

    def test_unhealthy_includes_troubleshooting(self):
        text = render_status_markdown(
            GatewayStatus(healthy=False, endpoint="http://x", agent_id="main", error="HTTP 500")
        )
        assert "Unreachable" in text
        assert "HTTP 500" in text
        assert "clawdbot gateway start" in text
