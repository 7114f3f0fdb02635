"""Expand seed messages into their full threads with per-thread fault isolation."""
from __future__ import annotations

import logging
import re
from urllib.parse import unquote

from .fanout import gather_outcomes
from .message_source import MessageSource
from .models import Message, ThreadContext

PERMALINK_THREAD_RE = re.compile(r"[?&]thread_ts=([^&#]+)")


def thread_root_id(message: Message) -> str | None:
    """Thread identity from the message pointer, its permalink, or its own replies."""
    if message.thread_root_id:
        return message.thread_root_id
    if message.permalink:
        match = PERMALINK_THREAD_RE.search(message.permalink)
        if match:
            return unquote(match.group(1))
    if message.reply_count > 0 and message.id:
        return message.id
    return None


class ThreadContextResolver:
    def __init__(self, *, source: MessageSource):
        self.source = source
        self.logger = logging.getLogger("thread_resolver")

    async def resolve(self, message: Message, channel: str) -> ThreadContext:
        root_id = thread_root_id(message)
        if root_id is None:
            return ThreadContext(root_message=message)
        try:
            return await self._fetch_thread(root_id, channel, fallback_root=message)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(
                "thread_fetch_failed channel=%s root=%s seed=%s error=%s",
                channel,
                root_id,
                message.id,
                exc,
            )
            return ThreadContext(root_message=message)

    async def resolve_all(
        self,
        messages: list[Message],
        channel: str,
        *,
        max_threads: int | None = None,
    ) -> list[ThreadContext]:
        """Resolve every seed, fetching each distinct thread at most once."""
        groups: dict[str, list[Message]] = {}
        order: list[str | Message] = []
        for message in messages:
            root_id = thread_root_id(message)
            over_limit = max_threads is not None and len(groups) >= max_threads
            if root_id is None or (root_id not in groups and over_limit):
                order.append(message)
                continue
            if root_id not in groups:
                groups[root_id] = []
                order.append(root_id)
            groups[root_id].append(message)

        outcome = await gather_outcomes(
            {
                root_id: self._fetch_thread(root_id, channel, fallback_root=seeds[0])
                for root_id, seeds in groups.items()
            }
        )

        contexts: list[ThreadContext] = []
        for entry in order:
            if isinstance(entry, Message):
                contexts.append(ThreadContext(root_message=entry))
                continue
            if entry in outcome.successes:
                contexts.append(outcome.successes[entry])
                continue
            seeds = groups[entry]
            self.logger.warning(
                "thread_fetch_failed channel=%s root=%s seeds=%s error=%s",
                channel,
                entry,
                len(seeds),
                outcome.failures.get(entry),
            )
            contexts.extend(ThreadContext(root_message=seed) for seed in seeds)
        return contexts

    async def _fetch_thread(self, root_id: str, channel: str, *, fallback_root: Message) -> ThreadContext:
        outcome = await gather_outcomes(
            {
                "root": self.source.get_message(channel, root_id),
                "replies": self.source.get_thread_replies(channel, root_id),
            }
        )
        if outcome.failures:
            raise next(iter(outcome.failures.values()))
        root = outcome.successes["root"]
        replies = outcome.successes["replies"]
        root_message = root or fallback_root
        ordered: dict[str, Message] = {}
        for reply in replies or []:
            if reply is None or not reply.id or reply.id == root_message.id:
                continue
            ordered.setdefault(reply.id, reply)
        return ThreadContext(
            root_message=root_message,
            replies=tuple(sorted(ordered.values(), key=lambda item: item.sort_key)),
        )
