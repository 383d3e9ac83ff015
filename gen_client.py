"""Generation client: vision analysis, text generation and image synthesis.

Vision and text go through OpenAI (or Anthropic for text, if configured);
image synthesis goes through Replicate.  Provider errors are translated into
the ``errors`` taxonomy, and a retryable failure on a family's primary model
gets exactly one more attempt on its fallback model.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import requests

import costs
from config import Settings
from errors import (
    MalformedOutputError,
    ModelError,
    QuotaExceededError,
    SafetyBlockedError,
    TransportError,
)
from image_utils import to_data_url

log = logging.getLogger(__name__)

UsageCallback = Callable[[str, float], None]

_TEXT_SYSTEM_PROMPT = (
    "You are a senior e-commerce fashion copywriter. "
    "Return valid JSON only — no markdown fences, no commentary."
)


# ---------------------------------------------------------------------------
# Provider error classification
# ---------------------------------------------------------------------------

def _classify_openai_error(exc: Exception, model: str) -> ModelError:
    import openai

    msg = str(exc)
    if isinstance(exc, openai.RateLimitError):
        return QuotaExceededError(f"OpenAI quota/rate limit: {msg}", model)
    if isinstance(exc, (openai.APIConnectionError, openai.InternalServerError)):
        return TransportError(f"OpenAI transport error: {msg}", model)
    if isinstance(exc, openai.AuthenticationError):
        return ModelError("OpenAI API key is invalid or expired.", model)
    if isinstance(exc, openai.BadRequestError) and (
        "content_policy" in msg or "safety" in msg.lower()
    ):
        return SafetyBlockedError(f"OpenAI safety system rejected the request: {msg}", model)
    return ModelError(f"OpenAI error: {msg}", model)


def _classify_anthropic_error(exc: Exception, model: str) -> ModelError:
    import anthropic

    msg = str(exc)
    if isinstance(exc, anthropic.RateLimitError):
        return QuotaExceededError(f"Anthropic rate limit: {msg}", model)
    if isinstance(exc, (anthropic.APIConnectionError, anthropic.InternalServerError)):
        return TransportError(f"Anthropic transport error: {msg}", model)
    if isinstance(exc, anthropic.APIStatusError) and exc.status_code == 529:
        return TransportError(f"Anthropic overloaded: {msg}", model)
    if isinstance(exc, anthropic.AuthenticationError):
        return ModelError("Anthropic API key is invalid or expired.", model)
    return ModelError(f"Anthropic error: {msg}", model)


def _classify_replicate_error(exc: Exception, model: str) -> ModelError:
    err = str(exc)
    low = err.lower()
    if "nsfw" in low or "sensitive" in low or "safety" in low:
        return SafetyBlockedError(f"Image blocked by safety filter: {err}", model)
    if "401" in err or "authentication" in low or "unauthenticated" in low:
        return ModelError(
            "Replicate API token is invalid or expired. Check your REPLICATE_API_TOKEN.", model
        )
    if "402" in err or "429" in err or "quota" in low or "payment" in low or "throttled" in low:
        return QuotaExceededError(f"Replicate quota/credits exhausted: {err}", model)
    return TransportError(f"Replicate request failed: {err}", model)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class GenerationClient:
    """Capability wrapper used by the stage executors.

    SDK clients are created lazily; tests pass their own in.
    """

    def __init__(
        self,
        settings: Settings,
        usage_cb: Optional[UsageCallback] = None,
        openai_client: Any = None,
        anthropic_client: Any = None,
        replicate_client: Any = None,
    ) -> None:
        self.settings = settings
        self.usage_cb = usage_cb
        self._openai = openai_client
        self._anthropic = anthropic_client
        self._replicate = replicate_client

    # ------------------------------------------------------------------
    # SDK clients
    # ------------------------------------------------------------------

    def _openai_client(self):
        if self._openai is None:
            from openai import AsyncOpenAI
            if not self.settings.openai_api_key:
                raise ModelError("OPENAI_API_KEY not set")
            self._openai = AsyncOpenAI(api_key=self.settings.openai_api_key)
        return self._openai

    def _anthropic_client(self):
        if self._anthropic is None:
            import anthropic
            if not self.settings.anthropic_api_key:
                raise ModelError("ANTHROPIC_API_KEY not set")
            self._anthropic = anthropic.AsyncAnthropic(api_key=self.settings.anthropic_api_key)
        return self._anthropic

    def _replicate_client(self):
        if self._replicate is None:
            import replicate
            if not self.settings.replicate_api_token:
                raise ModelError("REPLICATE_API_TOKEN not set")
            self._replicate = replicate.Client(api_token=self.settings.replicate_api_token)
        return self._replicate

    # ------------------------------------------------------------------
    # Fallback + accounting
    # ------------------------------------------------------------------

    async def _with_fallback(
        self,
        family: str,
        primary: str,
        fallback: str,
        call: Callable[[str], Awaitable[Any]],
    ) -> Any:
        try:
            return await call(primary)
        except ModelError as exc:
            if not exc.retryable or not fallback or fallback == primary:
                raise
            log.warning("%s call on %s failed (%s); retrying once on %s",
                        family, primary, exc, fallback)
            return await call(fallback)

    def _record(self, model: str, cost: float) -> None:
        if self.usage_cb is None:
            return
        try:
            self.usage_cb(model, cost)
        except Exception:
            log.warning("Usage recording failed for %s", model, exc_info=True)

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    async def analyze(self, image: str, instruction: str) -> str:
        """Describe ``image`` following ``instruction``.  Returns plain text."""
        s = self.settings

        async def call(model: str) -> str:
            messages = [{
                "role": "user",
                "content": [
                    {"type": "text", "text": instruction},
                    {"type": "image_url", "image_url": {"url": to_data_url(image)}},
                ],
            }]
            text = await self._openai_chat(model, messages, json_mode=False)
            if not text:
                raise MalformedOutputError("Vision model returned no text", model)
            return text

        return await self._with_fallback("vision", s.vision_model, s.vision_fallback_model, call)

    async def generate_text(self, prompt: str) -> Dict[str, Any]:
        """Run ``prompt`` through the text model and decode its JSON answer."""
        s = self.settings

        async def call(model: str) -> Dict[str, Any]:
            if s.text_provider == "anthropic":
                text = await self._anthropic_message(model, _TEXT_SYSTEM_PROMPT, prompt)
            else:
                messages = [
                    {"role": "system", "content": _TEXT_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ]
                text = await self._openai_chat(model, messages, json_mode=True)
            try:
                data = json.loads(text)
            except (json.JSONDecodeError, TypeError) as exc:
                raise MalformedOutputError(f"Text model returned invalid JSON: {exc}", model)
            if not isinstance(data, dict):
                raise MalformedOutputError("Text model returned JSON that is not an object", model)
            return data

        return await self._with_fallback("text", s.text_model, s.text_fallback_model, call)

    async def synthesize_image(self, prompt: str, conditioning_images: Sequence[str]) -> str:
        """Generate one image guided by ``conditioning_images``.  Returns a data URL."""
        s = self.settings
        images = [to_data_url(i) for i in conditioning_images if i]

        async def call(model: str) -> str:
            return await self._run_replicate(model, prompt, images)

        return await self._with_fallback("image", s.image_model, s.image_fallback_model, call)

    # ------------------------------------------------------------------
    # Provider calls
    # ------------------------------------------------------------------

    async def _openai_chat(self, model: str, messages: List[Dict], json_mode: bool) -> str:
        client = self._openai_client()
        kwargs: Dict[str, Any] = {"model": model, "messages": messages}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        t0 = time.time()
        try:
            resp = await client.chat.completions.create(**kwargs)
        except Exception as exc:
            raise _classify_openai_error(exc, model) from exc

        choice = resp.choices[0]
        if choice.finish_reason == "content_filter" or getattr(choice.message, "refusal", None):
            raise SafetyBlockedError("OpenAI refused to answer on safety grounds", model)

        in_tok = resp.usage.prompt_tokens
        out_tok = resp.usage.completion_tokens
        log.info(
            "OpenAI call: model=%s  %d in / %d out tokens  %.1fs",
            model, in_tok, out_tok, time.time() - t0,
        )
        self._record(model, costs.llm_cost(model, "openai", in_tok, out_tok))
        return (choice.message.content or "").strip()

    async def _anthropic_message(self, model: str, system: str, user: str) -> str:
        client = self._anthropic_client()
        t0 = time.time()
        try:
            msg = await client.messages.create(
                model=model,
                max_tokens=2048,
                system=system,
                messages=[{"role": "user", "content": user}],
            )
        except Exception as exc:
            raise _classify_anthropic_error(exc, model) from exc

        if getattr(msg, "stop_reason", None) == "refusal":
            raise SafetyBlockedError("Anthropic refused to answer on safety grounds", model)

        in_tok = msg.usage.input_tokens
        out_tok = msg.usage.output_tokens
        log.info(
            "Anthropic call: model=%s  %d in / %d out tokens  %.1fs",
            model, in_tok, out_tok, time.time() - t0,
        )
        self._record(model, costs.llm_cost(model, "anthropic", in_tok, out_tok))
        return msg.content[0].text.strip() if msg.content else ""

    async def _run_replicate(self, model: str, prompt: str, images: List[str]) -> str:
        client = self._replicate_client()
        payload: Dict[str, Any] = {"prompt": prompt, "output_format": "png"}
        if images:
            payload["image_input"] = images

        t0 = time.time()
        try:
            raw_output = await client.async_run(model, input=payload)
        except Exception as exc:
            log.error("Replicate error [%s] after %.1fs: %s", model, time.time() - t0, exc)
            raise _classify_replicate_error(exc, model) from exc

        # Normalise output to URL string
        raw = raw_output[0] if isinstance(raw_output, list) and raw_output else raw_output
        if not raw:
            raise MalformedOutputError("Image model returned no image", model)
        url = getattr(raw, "url", None) or str(raw)

        image = await asyncio.to_thread(self._download_image, url, model)
        log.info("Replicate call: model=%s  %.1fs", model, time.time() - t0)
        self._record(model, costs.image_cost(model))
        return image

    @staticmethod
    def _download_image(url: str, model: str) -> str:
        """Fetch a result URL so the image outlives Replicate's expiry window."""
        if url.startswith("data:"):
            return url
        try:
            resp = requests.get(url, timeout=90)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise TransportError(f"Could not download generated image: {exc}", model) from exc
        if not resp.content:
            raise MalformedOutputError("Generated image was empty", model)
        mime_type = resp.headers.get("Content-Type", "image/png").split(";")[0]
        return to_data_url(resp.content, mime_type)
