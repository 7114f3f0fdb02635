"""Tagged block variants for chat payloads and their text extraction."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class Section:
    text: str = ""
    fields: tuple[str, ...] = ()


@dataclass(frozen=True)
class RichText:
    text: str = ""


@dataclass(frozen=True)
class Context:
    elements: tuple[str, ...] = ()


@dataclass(frozen=True)
class Header:
    text: str = ""


@dataclass(frozen=True)
class Divider:
    pass


Block = Union[Section, RichText, Context, Header, Divider]


@dataclass(frozen=True)
class Attachment:
    pretext: str = ""
    title: str = ""
    text: str = ""
    fallback: str = ""
    fields: tuple[str, ...] = ()
    blocks: tuple[Block, ...] = ()


def _text_object(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        text = value.get("text")
        return text if isinstance(text, str) else ""
    return ""


def _rich_text_elements(elements: Any, *, in_list: bool = False) -> str:
    if not isinstance(elements, list):
        return ""
    parts: list[str] = []
    for element in elements:
        if not isinstance(element, dict):
            continue
        kind = element.get("type")
        if kind == "text":
            parts.append(str(element.get("text") or ""))
        elif kind == "link":
            parts.append(str(element.get("text") or element.get("url") or ""))
        elif kind == "user":
            parts.append(f"<@{element.get('user_id', '')}>")
        elif kind == "emoji":
            parts.append(f":{element.get('name', '')}:")
        elif "elements" in element:
            # rich_text_section, rich_text_list, rich_text_quote, rich_text_preformatted
            nested = _rich_text_elements(element.get("elements"), in_list=kind == "rich_text_list")
            if kind == "rich_text_list":
                if parts and not parts[-1].endswith("\n"):
                    parts.append("\n")
            elif in_list:
                # List items render as "- item" lines, like a typed list.
                nested = "- " + nested.rstrip("\n") + "\n"
            parts.append(nested)
    return "".join(parts)


def parse_block(raw: Any) -> Block | None:
    """Build a typed block from a raw payload; unknown shapes return None."""
    if not isinstance(raw, dict):
        return None
    kind = raw.get("type")
    if kind == "section":
        fields = raw.get("fields") if isinstance(raw.get("fields"), list) else []
        return Section(
            text=_text_object(raw.get("text")),
            fields=tuple(text for text in (_text_object(item) for item in fields) if text),
        )
    if kind == "rich_text":
        return RichText(text=_rich_text_elements(raw.get("elements")))
    if kind == "context":
        elements = raw.get("elements") if isinstance(raw.get("elements"), list) else []
        return Context(elements=tuple(text for text in (_text_object(item) for item in elements) if text))
    if kind == "header":
        return Header(text=_text_object(raw.get("text")))
    if kind == "divider":
        return Divider()
    return None


def parse_blocks(raw: Any) -> tuple[Block, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(block for block in (parse_block(item) for item in raw) if block is not None)


def parse_attachments(raw: Any) -> tuple[Attachment, ...]:
    if not isinstance(raw, list):
        return ()
    attachments: list[Attachment] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        fields = item.get("fields") if isinstance(item.get("fields"), list) else []
        attachments.append(
            Attachment(
                pretext=str(item.get("pretext") or ""),
                title=str(item.get("title") or ""),
                text=str(item.get("text") or ""),
                fallback=str(item.get("fallback") or ""),
                fields=tuple(
                    f"{field.get('title', '')}: {field.get('value', '')}".strip(": ")
                    for field in fields
                    if isinstance(field, dict)
                ),
                blocks=parse_blocks(item.get("blocks")),
            )
        )
    return tuple(attachments)


def block_text(block: Block) -> str:
    if isinstance(block, Section):
        return "\n".join(part for part in (block.text, *block.fields) if part)
    if isinstance(block, RichText):
        return block.text
    if isinstance(block, Context):
        return " ".join(block.elements)
    if isinstance(block, Header):
        return f"Header: {block.text}" if block.text else ""
    if isinstance(block, Divider):
        return "---"
    return ""


def attachment_text(attachment: Attachment) -> str:
    parts = [attachment.pretext, attachment.title, attachment.text, *attachment.fields]
    parts.extend(block_text(block) for block in attachment.blocks)
    if not any(parts):
        parts.append(attachment.fallback)
    return "\n".join(part for part in parts if part)


def extract_all_text(message: Any) -> str:
    """Join message text with every block and attachment text, skipping repeats."""
    if message is None:
        return ""
    fragments = [str(getattr(message, "text", "") or "")]
    fragments.extend(block_text(block) for block in getattr(message, "blocks", ()) or ())
    fragments.extend(attachment_text(item) for item in getattr(message, "attachments", ()) or ())
    seen: set[str] = set()
    unique: list[str] = []
    for fragment in fragments:
        cleaned = fragment.strip()
        if not cleaned or cleaned in seen:
            continue
        seen.add(cleaned)
        unique.append(cleaned)
    return "\n".join(unique)
