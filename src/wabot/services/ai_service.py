from __future__ import annotations

import asyncio
import random
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Union

from google import genai
from google.genai import types as genai_types

from wabot.config import Settings
from wabot.services.logger_service import LoggerService
from wabot.storage import MessagePackStore


DEFAULT_MODELS = ("gemini-1.5-flash-latest", "gemini-1.5-flash", "gemini-1.5-pro-latest")
CACHE_KEY_PROMPT_CHARS = 50
SAFETY_CATEGORIES = (
    genai_types.HarmCategory.HARM_CATEGORY_HARASSMENT,
    genai_types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    genai_types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    genai_types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
)
BLOCKED_FINISH_REASONS = ("SAFETY", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII")
FALLBACK_RESPONSES = (
    "I'm having trouble understanding that. Could you rephrase?",
    "Hmm, let me think about that again...",
    "My circuits are a bit fuzzy right now. Ask me later?",
)


class AIServiceError(RuntimeError):
    pass


class AIBlockedError(AIServiceError):
    pass


class AIEmptyResponseError(AIServiceError):
    pass


class AIResponseShapeError(AIServiceError):
    pass


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    data: bytes
    mimetype: str = "image/jpeg"


PromptPart = Union[TextPart, ImagePart]


@dataclass
class ApiTestResult:
    ok: bool
    detail: str
    latency_ms: int | None


class AIService:
    def __init__(self, settings: Settings, store: MessagePackStore, logger: LoggerService | None = None) -> None:
        self.settings = settings
        self.store = store
        self.logger = logger
        self._cache: OrderedDict[str, tuple[float, str]] = OrderedDict()
        self._rng = random.Random()
        self._client: genai.Client | None = None

    def has_api_key(self) -> bool:
        return bool(self.settings.gemini_api_key.strip())

    async def generate(self, parts: list[PromptPart], *, cache_key: str = "") -> str:
        """
        Generate text for ``parts``.

        Raises AIBlockedError when the provider's safety policy stops the prompt or the
        answer, AIEmptyResponseError when nothing usable came back, AIResponseShapeError
        when the response is not what the API documents, and AIServiceError otherwise
        (transport failures and timeouts included). Only text-only prompts with a cache
        key are cached.
        """
        if not parts:
            raise AIEmptyResponseError("Nothing to send to the model.")
        if not self.has_api_key():
            raise AIServiceError("Gemini API key is not configured.")
        cacheable = bool(cache_key) and all(isinstance(part, TextPart) for part in parts)
        if cacheable:
            cached = self._cache_get(cache_key)
            if cached is not None:
                if self.logger is not None:
                    self.logger.debug("ai.cache_hit", key=cache_key[:80])
                return cached

        contents = self._build_contents(parts)
        last_error: AIServiceError | None = None
        for model in self._model_candidates():
            try:
                response = await self._generate_content(contents, model=model)
            except AIServiceError as exc:
                last_error = exc
                continue
            text = self._extract_text(response)
            self._remember_model(model)
            if cacheable:
                self._cache_put(cache_key, text)
            return text
        raise last_error or AIServiceError("No model candidates configured.")

    def fallback_response(self) -> str:
        return self._rng.choice(FALLBACK_RESPONSES)

    def cache_key(self, sender_id: str, prompt: str) -> str:
        return f"{sender_id}:{prompt[:CACHE_KEY_PROMPT_CHARS]}"

    async def test_api(self) -> ApiTestResult:
        started = time.perf_counter()
        if not self.has_api_key():
            result = ApiTestResult(ok=False, detail="No API key found (GEMINI_API_KEY).", latency_ms=None)
            self._save_api_test(result)
            return result
        contents = self._build_contents([TextPart("You are a health check endpoint. Reply with exactly: OK")])
        models_tried: list[str] = []
        last_error = "unknown error"
        for model in self._model_candidates():
            models_tried.append(model)
            try:
                response = await self._generate_content(contents, model=model)
                output = self._extract_text(response)
            except AIServiceError as exc:
                last_error = str(exc)
                continue
            self._remember_model(model)
            result = ApiTestResult(
                ok=True,
                detail=f"API reachable using model `{model}`. Response: {output[:120]}",
                latency_ms=int((time.perf_counter() - started) * 1000),
            )
            self._save_api_test(result)
            return result

        result = ApiTestResult(
            ok=False,
            detail=f"API test failed. models={','.join(models_tried) or '(none)'}. last_error={last_error[:220]}",
            latency_ms=int((time.perf_counter() - started) * 1000),
        )
        self._save_api_test(result)
        return result

    async def _generate_content(self, contents: list[genai_types.Content], *, model: str) -> Any:
        timeout = float(self.settings.ai_timeout_sec)
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, self._generate_sync, contents, model),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise AIServiceError(f"Request to {model} timed out after {timeout:g}s.") from exc
        except AIServiceError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise AIServiceError(f"Request to {model} failed: {exc}") from exc

    def _generate_sync(self, contents: list[genai_types.Content], model: str) -> Any:
        return self._get_client().models.generate_content(
            model=model,
            contents=contents,
            config=self._generation_config(),
        )

    def _get_client(self) -> genai.Client:
        if self._client is None:
            base_url = self.settings.gemini_base_url.strip()
            http_options = genai_types.HttpOptions(base_url=base_url) if base_url else None
            self._client = genai.Client(api_key=self.settings.gemini_api_key.strip(), http_options=http_options)
        return self._client

    def _generation_config(self) -> genai_types.GenerateContentConfig:
        return genai_types.GenerateContentConfig(
            safety_settings=[
                genai_types.SafetySetting(
                    category=category,
                    threshold=genai_types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
                )
                for category in SAFETY_CATEGORIES
            ],
        )

    def _build_contents(self, parts: list[PromptPart]) -> list[genai_types.Content]:
        sdk_parts: list[genai_types.Part] = []
        for part in parts:
            if isinstance(part, TextPart):
                if part.text:
                    sdk_parts.append(genai_types.Part.from_text(text=part.text))
            else:
                sdk_parts.append(genai_types.Part.from_bytes(data=part.data, mime_type=part.mimetype or "image/jpeg"))
        return [genai_types.Content(role="user", parts=sdk_parts)]

    def _extract_text(self, response: Any) -> str:
        if response is None:
            raise AIEmptyResponseError("No response from model.")
        feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None)
        if block_reason:
            raise AIBlockedError(f"Prompt blocked: {_enum_name(block_reason)}")
        candidates = getattr(response, "candidates", None)
        if candidates is None:
            raise AIEmptyResponseError("No candidates in response.")
        if not isinstance(candidates, (list, tuple)):
            raise AIResponseShapeError("`candidates` is not a list.")
        if not candidates:
            raise AIEmptyResponseError("Empty candidates list.")
        for candidate in candidates:
            reason = _enum_name(getattr(candidate, "finish_reason", None))
            if reason in BLOCKED_FINISH_REASONS:
                raise AIBlockedError(f"Answer blocked: {reason}")
        content = getattr(candidates[0], "content", None)
        raw_parts = getattr(content, "parts", None) or []
        if not isinstance(raw_parts, (list, tuple)):
            raise AIResponseShapeError("Candidate parts is not a list.")
        texts = [part.text for part in raw_parts if isinstance(getattr(part, "text", None), str)]
        merged = "".join(texts).strip()
        if not merged:
            raise AIEmptyResponseError("Model returned empty content.")
        limit = int(self.settings.ai_max_response_chars)
        if len(merged) > limit:
            raise AIResponseShapeError(f"Model returned {len(merged)} chars (limit {limit}).")
        return merged

    def _cache_get(self, key: str) -> str | None:
        row = self._cache.get(key)
        if row is None:
            return None
        expires_at, text = row
        if time.monotonic() >= expires_at:
            self._cache.pop(key, None)
            return None
        self._cache.move_to_end(key)
        return text

    def _cache_put(self, key: str, text: str) -> None:
        ttl = float(self.settings.ai_cache_ttl_sec)
        if ttl <= 0:
            return
        self._cache[key] = (time.monotonic() + ttl, text)
        self._cache.move_to_end(key)
        while len(self._cache) > max(1, int(self.settings.ai_cache_size)):
            self._cache.popitem(last=False)

    def _model_candidates(self) -> list[str]:
        candidates: list[str] = []
        configured = self.settings.gemini_model.strip()
        auto_model = str(self._runtime().get("ai_model", "")).strip()
        for model in (configured, auto_model, *DEFAULT_MODELS):
            if model and model not in candidates:
                candidates.append(model)
        return candidates

    def _remember_model(self, model: str) -> None:
        runtime = self._runtime()
        if runtime.get("ai_model") != model:
            runtime["ai_model"] = model
            self.store.touch()

    def _save_api_test(self, result: ApiTestResult) -> None:
        self._runtime()["last_api_test"] = {
            "ok": result.ok,
            "detail": result.detail[:500],
            "latency_ms": result.latency_ms,
            "ts": datetime.now(tz=timezone.utc).isoformat(),
        }
        self.store.touch()

    def _runtime(self) -> dict[str, Any]:
        return self.store.section("runtime")


def _enum_name(value: Any) -> str:
    if value is None:
        return ""
    return str(getattr(value, "name", value))
