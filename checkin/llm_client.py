from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Optional, Protocol


class LLMClient(Protocol):
    async def stream_text(self, *, system: str, prompt: str) -> AsyncIterator[str]:
        ...

    async def aclose(self) -> None:
        ...


class FakeLLMClient:
    """
    Scripted oracle for tests and local runs.

    Each call streams the next reply; the last reply repeats once the script runs out.
    """

    def __init__(self, replies: list[str], *, delay_s: float = 0.0) -> None:
        if not replies:
            raise ValueError("FakeLLMClient needs at least one reply")
        self._replies = list(replies)
        self._delay_s = float(delay_s)
        self.prompts: list[tuple[str, str]] = []
        self.closed = False

    async def stream_text(self, *, system: str, prompt: str) -> AsyncIterator[str]:
        idx = min(len(self.prompts), len(self._replies) - 1)
        self.prompts.append((system, prompt))
        if self._delay_s > 0:
            await asyncio.sleep(self._delay_s)
        yield self._replies[idx]

    async def aclose(self) -> None:
        self.closed = True


class GeminiLLMClient:
    """
    Gemini adapter using the official Google Gen AI SDK (google-genai).

    Lazily imports `google-genai` so tests do not require credentials or the dependency.
    """

    def __init__(
        self,
        *,
        api_key: str = "",
        vertexai: bool = False,
        project: str = "",
        location: str = "global",
        model: str = "gemini-3-flash-preview",
    ) -> None:
        self._api_key = api_key
        self._vertexai = bool(vertexai)
        self._project = project
        self._location = location
        self._model = model

        self._client: Any = None
        self._aclient: Any = None
        self._types: Any = None

    def _ensure_client(self) -> tuple[Any, Any]:
        if self._aclient is not None:
            return (self._aclient, self._types)

        try:
            from google import genai  # type: ignore[import-not-found]
            from google.genai import types  # type: ignore[import-not-found]
        except Exception as e:
            raise RuntimeError(
                "GeminiLLMClient requires the optional dependency 'google-genai'. "
                "Install with: python3 -m pip install -e '.[gemini]'"
            ) from e

        if self._vertexai:
            self._client = genai.Client(vertexai=True, project=self._project, location=self._location)
        else:
            self._client = genai.Client(api_key=self._api_key)
        self._aclient = self._client.aio
        self._types = types
        return (self._aclient, self._types)

    async def stream_text(self, *, system: str, prompt: str) -> AsyncIterator[str]:
        aclient, types_mod = self._ensure_client()

        cfg = None
        try:
            cfg = types_mod.GenerateContentConfig(
                system_instruction=system,
                response_mime_type="application/json",
            )
        except Exception:
            cfg = None

        stream = await aclient.models.generate_content_stream(
            model=self._model,
            contents=prompt if cfg is not None else f"{system}\n\n{prompt}",
            config=cfg,
        )
        # The stream may end with an empty chunk; drain it to completion.
        async for chunk in stream:
            txt = getattr(chunk, "text", None)
            if txt:
                yield str(txt)

    async def aclose(self) -> None:
        if self._aclient is not None:
            try:
                await self._aclient.aclose()
            finally:
                self._aclient = None
                self._client = None
                self._types = None


class OpenAILLMClient:
    """
    OpenAI Responses streaming adapter.

    Lazy-imports the `openai` package so deterministic tests can run without credentials.
    Only output text deltas are emitted.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = "gpt-5-mini",
        reasoning_effort: str = "minimal",
        timeout_ms: int = 6000,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.reasoning_effort = (reasoning_effort or "minimal").strip().lower()
        self.timeout_ms = int(timeout_ms)
        self._client: Any = None

    def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            from openai import AsyncOpenAI  # type: ignore[import-not-found]
        except Exception as e:
            raise RuntimeError(
                "OpenAILLMClient requires the optional dependency 'openai'. "
                "Install with: python3 -m pip install -e '.[openai]'"
            ) from e
        self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    @staticmethod
    def _iter_deltas(event: Any) -> list[str]:
        et = str(getattr(event, "type", "") or "")
        if isinstance(event, dict):
            et = str(event.get("type") or "")
        if et not in {"response.output_text.delta", "output_text.delta"}:
            return []
        d = event.get("delta") if isinstance(event, dict) else getattr(event, "delta", None)
        if isinstance(d, str) and d:
            return [d]
        return []

    async def stream_text(self, *, system: str, prompt: str) -> AsyncIterator[str]:
        client = self._ensure_client()
        stream = await client.responses.create(
            model=self.model,
            instructions=system,
            input=prompt,
            stream=True,
            reasoning={"effort": self.reasoning_effort},
            timeout=max(1.0, self.timeout_ms / 1000.0),
        )
        async for event in stream:
            for delta in self._iter_deltas(event):
                yield delta

    async def aclose(self) -> None:
        if self._client is not None:
            close_fn = getattr(self._client, "close", None)
            if callable(close_fn):
                res = close_fn()
                if asyncio.iscoroutine(res):
                    await res
            self._client = None
