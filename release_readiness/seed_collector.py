"""Parallel keyword search that produces seed messages for issue detection."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from .fanout import gather_outcomes
from .message_blocks import extract_all_text
from .message_source import DateWindow, MessageSource
from .models import DetectionConfig, Message
from .patterns import PatternMatcher
from .state_machine import SeedSearchError

DEFAULT_SEED_QUERIES: tuple[str, ...] = (
    '"release blocker"',
    "blocker",
    "blocking",
    "critical",
    "urgent",
    "hotfix",
    '"no go"',
)


@dataclass
class SeedCollection:
    messages: list[Message] = field(default_factory=list)
    partial_failure: bool = False
    failed_queries: list[str] = field(default_factory=list)
    discarded: int = 0


class SeedCollector:
    def __init__(
        self,
        *,
        source: MessageSource,
        matcher: PatternMatcher,
        queries: Iterable[str] = DEFAULT_SEED_QUERIES,
    ):
        self.source = source
        self.matcher = matcher
        self.queries = tuple(dict.fromkeys(query for query in queries if query.strip()))
        if not self.queries:
            raise RuntimeError("SeedCollector requires at least one search query.")
        self.logger = logging.getLogger("seed_collector")

    async def collect(self, config: DetectionConfig, *, window: DateWindow | None = None) -> SeedCollection:
        search_window = window or DateWindow.for_day(config.date)
        outcome = await gather_outcomes(
            {query: self.source.search(query, config.channel, search_window) for query in self.queries}
        )
        for query, exc in outcome.failures.items():
            self.logger.warning("seed_search_failed channel=%s query=%s error=%s", config.channel, query, exc)
        if outcome.all_failed:
            raise SeedSearchError({query: exc for query, exc in outcome.failures.items()})

        merged: dict[str, Message] = {}
        for query in self.queries:
            for message in outcome.successes.get(query) or []:
                if message is None or not message.id or message.id in merged:
                    continue
                merged[message.id] = message

        kept: list[Message] = []
        discarded = 0
        for message in merged.values():
            text = extract_all_text(message)
            if self.matcher.is_negated_seed(text) or self.matcher.is_status_summary_header(text):
                discarded += 1
                continue
            kept.append(message)

        kept.sort(key=lambda item: item.sort_key, reverse=True)
        if len(kept) > config.max_messages:
            discarded += len(kept) - config.max_messages
            kept = kept[: config.max_messages]

        failed_queries = [query for query in self.queries if query in outcome.failures]
        self.logger.info(
            "seed_collection channel=%s window=%s queries=%s failed=%s seeds=%s discarded=%s",
            config.channel,
            search_window.search_modifier(),
            len(self.queries),
            len(failed_queries),
            len(kept),
            discarded,
        )
        return SeedCollection(
            messages=kept,
            partial_failure=bool(failed_queries),
            failed_queries=failed_queries,
            discarded=discarded,
        )
