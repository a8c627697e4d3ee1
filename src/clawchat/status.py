import logging
import time
from dataclasses import dataclass

import httpx

from clawchat.client import GatewayClient

logger = logging.getLogger(__name__)

HEALTH_PATH = "/health"
MODELS_PATH = "/v1/models"


@dataclass
class GatewayStatus:
    healthy: bool
    endpoint: str
    agent_id: str
    latency_ms: int | None = None
    error: str | None = None
    version: str | None = None
    sessions: int | None = None


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


async def check_gateway_status(client: GatewayClient) -> GatewayStatus:
    """Probe /health, falling back to /v1/models when it is unavailable."""
    config = client.config
    status = GatewayStatus(
        healthy=False,
        endpoint=config.endpoint,
        agent_id=config.agent_id or "main",
    )
    start = time.monotonic()

    try:
        response = await client.probe(HEALTH_PATH)
        if response.is_success:
            status.healthy = True
            status.latency_ms = _elapsed_ms(start)
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, dict):
                status.version = data.get("version")
                status.sessions = data.get("sessions")
            return status
        logger.debug(f"Health endpoint returned {response.status_code}")
    except httpx.RequestError as e:
        logger.debug(f"Health endpoint unavailable: {e}")

    try:
        response = await client.probe(MODELS_PATH)
        status.latency_ms = _elapsed_ms(start)
        if response.is_success:
            status.healthy = True
        else:
            status.error = f"HTTP {response.status_code}"
    except httpx.RequestError as e:
        status.latency_ms = _elapsed_ms(start)
        status.error = str(e) or "Connection failed"

    return status


def render_status_markdown(status: GatewayStatus) -> str:
    marker = "🟢" if status.healthy else "🔴"
    label = "Connected" if status.healthy else "Unreachable"

    rows = [
        f"| Status | {marker} {label} |",
        f"| Endpoint | `{status.endpoint}` |",
        f"| Agent ID | `{status.agent_id}` |",
    ]
    if status.latency_ms is not None:
        rows.append(f"| Latency | {status.latency_ms}ms |")
    if status.version:
        rows.append(f"| Version | {status.version} |")
    if status.sessions is not None:
        rows.append(f"| Sessions | {status.sessions} |")
    if status.error:
        rows.append(f"| Error | {status.error} |")

    lines = [
        f"# {marker} Gateway Status",
        "",
        "## Connection",
        "| Property | Value |",
        "|----------|-------|",
        *rows,
        "",
        "## Configuration",
        "The gateway endpoint and token are read from CLAWCHAT_ENDPOINT and "
        "CLAWCHAT_TOKEN (a .env file works too).",
    ]

    if not status.healthy:
        lines += [
            "",
            "## Troubleshooting",
            "",
            "1. **Check if the Clawdbot gateway is running**",
            "   ```",
            "   clawdbot gateway status",
            "   ```",
            "",
            "2. **Start the gateway if needed**",
            "   ```",
            "   clawdbot gateway start",
            "   ```",
            "",
            "3. **Verify the endpoint URL** matches your gateway configuration",
            "",
            "4. **Check the API token** matches `~/.clawdbot/clawdbot.json`",
        ]

    return "\n".join(lines) + "\n"
