"""Strict contracts for semantic model responses."""
from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class SemanticItemPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    name: str | None = Field(default=None, validation_alias=AliasChoices("name", "test", "item", "ticket"))
    status: str = "unclear"
    confidence: int = 0
    reasoning: str = Field(default="", validation_alias=AliasChoices("reasoning", "reason", "rationale"))

    @model_validator(mode="before")
    @classmethod
    def _move_textual_id(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        raw_id = value.get("id")
        if isinstance(raw_id, str) and not raw_id.strip().isdigit():
            patched = dict(value)
            patched.pop("id")
            patched.setdefault("name", raw_id)
            return patched
        return value

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> int | None:
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(str(value).strip())
        except ValueError:
            return None

    @field_validator("status", "reasoning", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: Any) -> int:
        if isinstance(value, str):
            value = value.strip().rstrip("%")
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0
        # Some models answer on a 0..1 scale.
        if 0 < number <= 1:
            number *= 100
        return max(0, min(100, int(round(number))))


class SemanticResponsePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    items: list[SemanticItemPayload] = Field(
        default_factory=list,
        validation_alias=AliasChoices("items", "tests", "tickets"),
    )
    summary: str = Field(default="", validation_alias=AliasChoices("summary", "overall_summary", "overallSummary"))

    @classmethod
    def from_raw(cls, raw: Any) -> SemanticResponsePayload:
        if isinstance(raw, list):
            raw = {"items": raw}
        if not isinstance(raw, dict):
            raise ValueError("semantic response must be a JSON object or array")
        entries = None
        for key in ("items", "tests", "tickets"):
            if isinstance(raw.get(key), list):
                entries = raw[key]
                break
        if entries is None:
            raise ValueError("semantic response has no items array")
        return cls.model_validate(
            {
                "items": [entry for entry in entries if isinstance(entry, dict)],
                "summary": raw.get("summary") or raw.get("overall_summary") or raw.get("overallSummary") or "",
            }
        )
