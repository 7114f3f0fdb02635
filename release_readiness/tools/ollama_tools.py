"""Ollama HTTP gateway with cached availability probing."""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

import httpx

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_MODEL = "qwen3:30b-a3b-instruct-2507-q4_K_M"
MAX_PROBE_TIMEOUT_SECONDS = 5.0
MAX_GENERATE_TIMEOUT_SECONDS = 60.0

THINK_BLOCK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
CODE_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


def model_installed(model: str, installed: list[str]) -> bool:
    family = model.split(":", 1)[0]
    for name in installed:
        if name == model or name.split(":", 1)[0] == family:
            return True
    return False


def clean_response(text: str) -> str:
    """Drop reasoning blocks and unwrap a fenced payload."""
    cleaned = THINK_BLOCK_RE.sub("", text or "")
    fenced = CODE_FENCE_RE.search(cleaned)
    if fenced:
        cleaned = fenced.group(1)
    return cleaned.strip()


def extract_balanced_json(text: str) -> str | None:
    """Return the first balanced JSON object or array found in ``text``."""
    start = -1
    for index, char in enumerate(text or ""):
        if char in "{[":
            start = index
            break
    if start < 0:
        return None
    stack: list[str] = []
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]":
            if not stack or stack.pop() != char:
                return None
            if not stack:
                return text[start : index + 1]
    return None


class OllamaGateway:
    """Thin client for a local Ollama server.

    Availability is probed once through ``GET /api/tags`` and cached on the
    instance until :meth:`reset_availability` is called.
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        probe_timeout_seconds: float = MAX_PROBE_TIMEOUT_SECONDS,
        generate_timeout_seconds: float = MAX_GENERATE_TIMEOUT_SECONDS,
        temperature: float = 0.1,
        num_predict: int = 2048,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.model = model or DEFAULT_MODEL
        self.probe_timeout_seconds = min(probe_timeout_seconds, MAX_PROBE_TIMEOUT_SECONDS)
        self.generate_timeout_seconds = min(generate_timeout_seconds, MAX_GENERATE_TIMEOUT_SECONDS)
        self.temperature = temperature
        self.num_predict = num_predict
        self.transport = transport
        self.logger = logging.getLogger("ollama_gateway")
        self._available: bool | None = None
        self._probe_lock = asyncio.Lock()

    def _client(self, timeout_seconds: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds),
            transport=self.transport,
        )

    async def is_available(self) -> bool:
        if self._available is not None:
            return self._available
        async with self._probe_lock:
            if self._available is None:
                self._available = await self._probe()
        return self._available

    def reset_availability(self) -> None:
        self._available = None

    async def _probe(self) -> bool:
        try:
            async with self._client(self.probe_timeout_seconds) as client:
                response = await asyncio.wait_for(client.get("/api/tags"), timeout=self.probe_timeout_seconds)
            response.raise_for_status()
            payload = response.json()
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("ollama_probe_failed url=%s error=%s", self.base_url, exc or type(exc).__name__)
            return False
        models = payload.get("models") if isinstance(payload, dict) else None
        names = [
            str(item.get("name") or item.get("model") or "")
            for item in models or []
            if isinstance(item, dict)
        ]
        available = model_installed(self.model, names)
        if available:
            self.logger.info("ollama_probe url=%s model=%s available=true", self.base_url, self.model)
        else:
            self.logger.warning(
                "ollama_model_missing url=%s model=%s installed=%s",
                self.base_url,
                self.model,
                ",".join(names) or "-",
            )
        return available

    async def generate(self, prompt: str, *, json_format: bool = True, num_predict: int | None = None) -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self.temperature,
                "num_predict": num_predict or self.num_predict,
            },
        }
        if json_format:
            payload["format"] = "json"
        async with self._client(self.generate_timeout_seconds) as client:
            response = await client.post("/api/generate", json=payload)
        if response.status_code >= 400:
            raise RuntimeError(
                f"Ollama /api/generate failed with HTTP {response.status_code}: {response.text[:200]}"
            )
        data = response.json()
        if not isinstance(data, dict):
            raise RuntimeError("Ollama /api/generate returned a non-object payload.")
        text = data.get("response") or data.get("thinking") or ""
        return clean_response(str(text))
