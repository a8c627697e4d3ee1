import logging
from typing import Any, Callable, Iterable
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from clawchat.config import GatewayConfig
from clawchat.models import JobStatus, Message
from clawchat.stream import StreamDecoder

logger = logging.getLogger(__name__)

COMPLETIONS_PATH = "/v1/chat/completions"
RUN_ID_KEYS = ("runId", "run_id", "id")

ChunkCallback = Callable[[str], None]


class GatewayError(Exception):
    pass


class TransportError(GatewayError):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"API error: {status_code} - {body}")
        self.status_code = status_code
        self.body = body


class SubmissionUnavailable(GatewayError):
    pass


def to_api_messages(messages: Iterable[Message | dict]) -> list[dict[str, str]]:
    out: list[dict[str, str]] = []
    for m in messages:
        if isinstance(m, Message):
            out.append(m.to_api())
        else:
            out.append({"role": m["role"], "content": m["content"]})
    return out


def _describe(error: Exception) -> str:
    # httpx timeouts carry no message of their own.
    return str(error) or type(error).__name__


def _first_choice_content(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    return content or ""


class GatewayClient:
    def __init__(
        self,
        config: GatewayConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.config.token}",
            }
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers=headers,
                timeout=self.config.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GatewayClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _payload(self, messages: Iterable[Message | dict], stream: bool) -> dict:
        return {
            "model": self.config.model_name,
            "messages": to_api_messages(messages),
            "stream": stream,
            "user": self.config.client_tag,
        }

    async def send_synchronous(
        self,
        messages: Iterable[Message | dict],
        on_chunk: ChunkCallback | None = None,
    ) -> str:
        body = self._payload(messages, stream=on_chunk is not None)
        try:
            if on_chunk is None:
                response = await self.client.post(COMPLETIONS_PATH, json=body)
                if response.is_error:
                    raise TransportError(response.status_code, response.text)
                return _first_choice_content(response.json())
            return await self._stream_completion(body, on_chunk)
        except httpx.RequestError as e:
            raise GatewayError(
                f"Request to {self.config.base_url} failed: {_describe(e)}"
            ) from e
        except ValueError as e:
            raise GatewayError(f"Invalid response from gateway: {e}") from e

    async def _stream_completion(self, body: dict, on_chunk: ChunkCallback) -> str:
        full_content = ""
        # No read timeout: agents may go quiet between tokens.
        timeout = httpx.Timeout(self.config.timeout, read=None)
        async with self.client.stream(
            "POST", COMPLETIONS_PATH, json=body, timeout=timeout
        ) as response:
            if response.is_error:
                await response.aread()
                raise TransportError(response.status_code, response.text)

            content_type = response.headers.get("content-type", "")
            if content_type.startswith("application/json"):
                # Gateway ignored the stream flag and answered in one piece.
                await response.aread()
                full_content = _first_choice_content(response.json())
                if full_content:
                    on_chunk(full_content)
                return full_content

            decoder = StreamDecoder()
            async for chunk in response.aiter_bytes():
                for delta in decoder.feed(chunk):
                    full_content += delta
                    on_chunk(delta)
                if decoder.done:
                    break
            for delta in decoder.close():
                full_content += delta
                on_chunk(delta)

        logger.debug(f"Stream finished with {len(full_content)} chars")
        return full_content

    async def submit_async(
        self, messages: Iterable[Message | dict], conversation_id: str
    ) -> str:
        body = self._payload(messages, stream=False)
        body["conversation_id"] = conversation_id
        try:
            response = await self.client.post(self.config.async_submit_path, json=body)
        except httpx.RequestError as e:
            raise SubmissionUnavailable(f"Async submission failed: {_describe(e)}") from e

        if response.is_error:
            raise SubmissionUnavailable(
                f"Async submission returned {response.status_code}: {response.text}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise SubmissionUnavailable(f"Async submission returned invalid JSON: {e}") from e

        if isinstance(data, dict):
            for key in RUN_ID_KEYS:
                run_id = data.get(key)
                if run_id:
                    logger.info(f"Submitted run {run_id} for conversation {conversation_id}")
                    return str(run_id)
        raise SubmissionUnavailable("Async submission response carried no run id")

    async def poll_status(self, run_id: str) -> JobStatus:
        path = f"{self.config.async_poll_path.rstrip('/')}/{quote(run_id, safe='')}"
        try:
            response = await self.client.get(path)
        except httpx.RequestError as e:
            raise GatewayError(f"Status check for run {run_id} failed: {_describe(e)}") from e

        if response.is_error:
            raise TransportError(response.status_code, response.text)
        try:
            return JobStatus.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise GatewayError(f"Unrecognised status for run {run_id}: {e}") from e

    async def probe(self, path: str) -> httpx.Response:
        return await self.client.get(path)
