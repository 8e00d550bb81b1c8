"""
Webhook gateway: send, edit, fetch and delete messages through per-channel
webhook URLs using Discord's REST API.

Webhook calls need no bot token, so the gateway talks to the endpoints
directly over ``aiohttp`` (the HTTP client py-cord itself runs on). Every
call returns a :class:`SendResult` instead of raising: webhook failures are
per-recipient and callers decide what a failure means for them.

Rate limits (HTTP 429) are retried after the ``retry_after`` the API
returns, up to ``max_retries`` times.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp
import discord

from interchat.util.logger import get_logger

logger = get_logger("webhook_gateway")

DISCORD_API_BASE = "https://discord.com/api/v10"

WEBHOOK_URL_RE = re.compile(
    r"^https://(?:(?:ptb|canary)\.)?discord(?:app)?\.com/api(?:/v\d+)?/webhooks/(\d+)/([\w-]+)/?$"
)

# Unknown Channel, Unknown Webhook, Missing Permissions, Invalid Webhook Token
GONE_ERROR_CODES = frozenset({10003, 10015, 50013, 50027})
INVALID_WEBHOOK_MESSAGE = "The provided webhook URL is not valid."

NO_MENTIONS: Dict[str, Any] = {"parse": []}


@dataclass(frozen=True, slots=True)
class WebhookError:
    """A failed webhook call.

    Attributes:
        status: HTTP status, or 0 when no response was received.
        code: Discord JSON error code, when the API returned one.
    """
    status: int
    message: str
    code: Optional[int] = None


@dataclass(frozen=True, slots=True)
class SendResult:
    """Outcome of a gateway call: the message object on success, else an error."""
    message: Optional[Dict[str, Any]] = None
    error: Optional[WebhookError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message_id(self) -> Optional[str]:
        if self.message and self.message.get("id") is not None:
            return str(self.message["id"])
        return None


def parse_webhook_url(webhook_url: str) -> Optional[Tuple[str, str]]:
    """Return ``(webhook_id, token)`` for a valid Discord webhook URL, else None."""
    match = WEBHOOK_URL_RE.match(webhook_url or "")
    if not match:
        return None
    return match.group(1), match.group(2)


def is_webhook_gone(error: Optional[WebhookError]) -> bool:
    """True when the error means the webhook (or its channel) will never work again."""
    if error is None:
        return False
    if error.code in GONE_ERROR_CODES:
        return True
    return error.message == INVALID_WEBHOOK_MESSAGE


def build_payload(
    content: Optional[str] = None,
    *,
    embeds: Sequence[discord.Embed] = (),
    view: Optional[discord.ui.View] = None,
    components: Optional[List[Dict[str, Any]]] = None,
    username: Optional[str] = None,
    avatar_url: Optional[str] = None,
) -> Dict[str, Any]:
    """Assemble a webhook execute / edit JSON body from py-cord objects.

    ``view`` is serialised with ``View.to_components()``; pass ``components``
    instead to send raw component dicts unchanged. Mentions are never parsed.
    """
    payload: Dict[str, Any] = {"allowed_mentions": NO_MENTIONS}
    if content is not None:
        payload["content"] = content
    if embeds:
        payload["embeds"] = [embed.to_dict() for embed in embeds]
    if view is not None:
        payload["components"] = view.to_components()
    elif components is not None:
        payload["components"] = components
    if username:
        payload["username"] = username[:80]
    if avatar_url:
        payload["avatar_url"] = avatar_url
    return payload


class WebhookGateway:
    """Async Discord webhook client.

    Args:
        session: Shared ``aiohttp.ClientSession``; created lazily when omitted.
        base_url: API root, overridable for tests.
        timeout_secs: Total timeout per request.
        max_retries: How many 429 responses to wait out before giving up.
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = DISCORD_API_BASE,
        timeout_secs: float = 10.0,
        max_retries: int = 3,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_secs)
        self._max_retries = max_retries

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
            logger.info("[WEBHOOK GATEWAY] HTTP session closed")
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send(self, webhook_url: str, payload: Dict[str, Any], thread_id: Optional[str] = None) -> SendResult:
        """Execute the webhook and wait for the created message."""
        params = {"wait": "true"}
        if thread_id:
            params["thread_id"] = str(thread_id)
        return await self._request("POST", webhook_url, "", payload=payload, params=params)

    async def edit_message(
        self,
        webhook_url: str,
        message_id: str,
        payload: Dict[str, Any],
        thread_id: Optional[str] = None,
    ) -> SendResult:
        return await self._request(
            "PATCH", webhook_url, f"/messages/{message_id}", payload=payload, params=self._thread_params(thread_id)
        )

    async def fetch_message(self, webhook_url: str, message_id: str, thread_id: Optional[str] = None) -> SendResult:
        return await self._request(
            "GET", webhook_url, f"/messages/{message_id}", params=self._thread_params(thread_id)
        )

    async def delete_message(self, webhook_url: str, message_id: str, thread_id: Optional[str] = None) -> SendResult:
        return await self._request(
            "DELETE", webhook_url, f"/messages/{message_id}", params=self._thread_params(thread_id)
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _thread_params(thread_id: Optional[str]) -> Dict[str, str]:
        return {"thread_id": str(thread_id)} if thread_id else {}

    async def _request(
        self,
        method: str,
        webhook_url: str,
        path_suffix: str,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> SendResult:
        parsed = parse_webhook_url(webhook_url)
        if parsed is None:
            return SendResult(error=WebhookError(status=0, message=INVALID_WEBHOOK_MESSAGE))

        webhook_id, token = parsed
        url = f"{self._base_url}/webhooks/{webhook_id}/{token}{path_suffix}"
        session = self._get_session()
        rate_limit_retries = 0

        while True:
            try:
                async with session.request(method, url, json=payload, params=params or None) as resp:
                    if resp.status == 204:
                        return SendResult(message={})
                    body = await self._read_body(resp)

                    if 200 <= resp.status < 300:
                        return SendResult(message=body if isinstance(body, dict) else {})

                    if resp.status == 429 and rate_limit_retries < self._max_retries:
                        rate_limit_retries += 1
                        retry_after = self._retry_after(resp, body)
                        logger.info(
                            "[WEBHOOK GATEWAY] Rate limited on %s webhook %s, retrying after %.2fs (attempt %d)",
                            method, webhook_id, retry_after, rate_limit_retries,
                        )
                        await asyncio.sleep(retry_after)
                        continue

                    error = self._error_from_body(resp.status, body)
                    log = logger.info if is_webhook_gone(error) else logger.warning
                    log("[WEBHOOK GATEWAY] %s webhook %s failed: %s (code=%s, status=%d)",
                        method, webhook_id, error.message, error.code, error.status)
                    return SendResult(error=error)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                logger.warning("[WEBHOOK GATEWAY] %s webhook %s network error: %s", method, webhook_id, exc)
                return SendResult(error=WebhookError(status=0, message=str(exc) or type(exc).__name__))

    @staticmethod
    async def _read_body(resp: aiohttp.ClientResponse) -> Any:
        try:
            return await resp.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            return None

    @staticmethod
    def _retry_after(resp: aiohttp.ClientResponse, body: Any) -> float:
        raw = body.get("retry_after") if isinstance(body, dict) else None
        if raw is None:
            raw = resp.headers.get("Retry-After")
        try:
            return max(float(raw), 0.0) if raw is not None else 1.0
        except (TypeError, ValueError):
            return 1.0

    @staticmethod
    def _error_from_body(status: int, body: Any) -> WebhookError:
        if isinstance(body, dict):
            code = body.get("code")
            return WebhookError(
                status=status,
                message=str(body.get("message") or f"HTTP {status}"),
                code=int(code) if isinstance(code, int) else None,
            )
        return WebhookError(status=status, message=f"HTTP {status}")
