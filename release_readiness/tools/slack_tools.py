"""Slack Web API adapter for the message source contract."""
from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from ..message_source import DateWindow
from ..models import Message
from ..retry import RetryPolicy, call_with_retry

CHANNEL_ID_RE = re.compile(r"^[CGD][A-Z0-9]{6,}$")
# Credential and permission problems are configuration errors, never transient.
NON_RETRYABLE_ERRORS = frozenset(
    {
        "invalid_auth",
        "not_authed",
        "token_revoked",
        "token_expired",
        "account_inactive",
        "missing_scope",
        "not_allowed_token_type",
        "channel_not_found",
        "not_in_channel",
        "thread_not_found",
        "message_not_found",
    }
)


class SlackGatewayError(RuntimeError):
    def __init__(self, message: str, *, error_code: str = "", retry_after_seconds: float | None = None):
        super().__init__(message)
        self.error_code = error_code
        self.retry_after_seconds = retry_after_seconds


class SlackGateway:
    """Slack gateway backed by the async Web API client.

    Search needs a user token (``search.messages`` rejects bot tokens). The
    channel-name cache lives on the instance and is filled idempotently.
    """

    def __init__(
        self,
        *,
        user_token: str,
        timeout_seconds: float = 15.0,
        retry_policy: RetryPolicy | None = None,
        search_page_size: int = 100,
        client: AsyncWebClient | None = None,
    ):
        if not user_token and client is None:
            raise RuntimeError("SLACK_USER_TOKEN must be configured for SlackGateway.")
        self.timeout_seconds = timeout_seconds
        self.retry_policy = retry_policy or RetryPolicy()
        self.search_page_size = search_page_size
        self.logger = logging.getLogger("slack_gateway")
        self.client = client or AsyncWebClient(token=user_token, timeout=int(self.timeout_seconds))
        self._channel_ids: dict[str, str] = {}

    async def _call(self, method_name: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        async def _invoke() -> Any:
            try:
                return await fn()
            except SlackApiError as exc:
                raise _runtime_error_from_slack(method_name, exc) from exc

        def _on_retry(attempt: int, exc: Exception) -> None:
            self.logger.warning("slack_retry method=%s attempt=%s error=%s", method_name, attempt, exc)

        return await call_with_retry(
            _invoke,
            policy=self.retry_policy,
            on_retry=_on_retry,
            is_retryable=_is_retryable,
            delay_hint=_retry_after,
        )

    async def resolve_channel(self, channel: str) -> str:
        name = channel.strip().lstrip("#")
        if CHANNEL_ID_RE.match(name):
            return name
        cached = self._channel_ids.get(name)
        if cached:
            return cached
        cursor: str | None = None
        while True:
            response = await self._call(
                "conversations.list",
                lambda: self.client.conversations_list(
                    types="public_channel,private_channel",
                    exclude_archived=True,
                    limit=1000,
                    cursor=cursor,
                ),
            )
            for item in response.get("channels") or []:
                if item.get("name") == name and item.get("id"):
                    self._channel_ids[name] = str(item["id"])
                    return self._channel_ids[name]
            cursor = (response.get("response_metadata") or {}).get("next_cursor") or None
            if not cursor:
                break
        raise SlackGatewayError(f"Slack channel not found: {channel}", error_code="channel_not_found")

    async def search(self, query: str, channel: str, window: DateWindow) -> list[Message]:
        name = channel.strip().lstrip("#")
        scope = f"in:<#{name}>" if CHANNEL_ID_RE.match(name) else f"in:#{name}"
        text = f"{query} {scope} {window.search_modifier()}"
        response = await self._call(
            "search.messages",
            lambda: self.client.search_messages(
                query=text,
                count=self.search_page_size,
                sort="timestamp",
                sort_dir="desc",
            ),
        )
        matches = (response.get("messages") or {}).get("matches") or []
        messages = [Message.from_payload(match) for match in matches if isinstance(match, dict)]
        self.logger.debug("slack_search query=%s matches=%s", text, len(messages))
        return [message for message in messages if message.id]

    async def get_thread_replies(self, channel: str, root_id: str) -> list[Message]:
        channel_id = await self.resolve_channel(channel)
        replies: list[Message] = []
        cursor: str | None = None
        while True:
            response = await self._call(
                "conversations.replies",
                lambda: self.client.conversations_replies(
                    channel=channel_id,
                    ts=root_id,
                    limit=200,
                    cursor=cursor,
                ),
            )
            for payload in response.get("messages") or []:
                message = Message.from_payload(payload)
                if message.id and message.id != root_id:
                    replies.append(message)
            cursor = (response.get("response_metadata") or {}).get("next_cursor") or None
            if not cursor:
                break
        return replies

    async def get_message(self, channel: str, message_id: str) -> Message:
        channel_id = await self.resolve_channel(channel)
        response = await self._call(
            "conversations.history",
            lambda: self.client.conversations_history(
                channel=channel_id,
                latest=message_id,
                inclusive=True,
                limit=1,
            ),
        )
        for payload in response.get("messages") or []:
            if str(payload.get("ts")) == message_id:
                return Message.from_payload(payload)
        # Thread replies are not part of channel history.
        response = await self._call(
            "conversations.replies",
            lambda: self.client.conversations_replies(channel=channel_id, ts=message_id, limit=1),
        )
        for payload in response.get("messages") or []:
            if str(payload.get("ts")) == message_id:
                return Message.from_payload(payload)
        raise SlackGatewayError(
            f"Slack message {message_id} not found in {channel}",
            error_code="message_not_found",
        )

    async def get_permalink(self, channel: str, message_id: str) -> str | None:
        try:
            channel_id = await self.resolve_channel(channel)
            response = await self._call(
                "chat.getPermalink",
                lambda: self.client.chat_getPermalink(channel=channel_id, message_ts=message_id),
            )
        except RuntimeError as exc:
            self.logger.debug("permalink unavailable channel=%s ts=%s reason=%s", channel, message_id, exc)
            return None
        permalink = response.get("permalink")
        return str(permalink) if permalink else None


def _is_retryable(exc: Exception) -> bool:
    code = getattr(exc, "error_code", "")
    return code not in NON_RETRYABLE_ERRORS


def _retry_after(exc: Exception) -> float | None:
    return getattr(exc, "retry_after_seconds", None)


def _retry_after_header(response: Any) -> float | None:
    headers = getattr(response, "headers", None) or {}
    for name, value in headers.items():
        if str(name).lower() != "retry-after":
            continue
        try:
            return float(value[0] if isinstance(value, list) else value)
        except (TypeError, ValueError):
            return None
    return None


def _slack_error_code(exc: SlackApiError) -> str:
    response = getattr(exc, "response", None)
    if response is None:
        return str(exc)
    code = response.get("error")
    return str(code or str(exc))


def _runtime_error_from_slack(method_name: str, exc: SlackApiError) -> SlackGatewayError:
    response = getattr(exc, "response", None)
    if response is None:
        return SlackGatewayError(f"Slack API {method_name} failed: {exc}")
    status_code = getattr(response, "status_code", None)
    error_code = _slack_error_code(exc)
    retry_after = _retry_after_header(response)
    if status_code:
        return SlackGatewayError(
            f"Slack API {method_name} failed with HTTP {status_code}: {error_code}",
            error_code=error_code,
            retry_after_seconds=retry_after,
        )
    return SlackGatewayError(
        f"Slack API {method_name} failed: {error_code}",
        error_code=error_code,
        retry_after_seconds=retry_after,
    )
