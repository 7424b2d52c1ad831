"""Text-differencing collaborator backed by Gemini.

`categorize` turns two page texts into six fixed change categories;
`summarize` writes a one-line summary per category for report enrichment.
Unparseable or blocked responses are refusals and terminal for the attempt.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

from pydantic import ValidationError

from rivalwatch.errors import DiffRefusedError, LLMUnavailableError
from rivalwatch.models.diff import CATEGORIES
from rivalwatch.schemas.diff import DiffAnalysis
from rivalwatch.schemas.report import AggregatedReport

logger = logging.getLogger(__name__)

DIFF_SYSTEM_PROMPT = """Analyze the content for changes across branding, integration, pricing, product, positioning, and partnership categories.
# Process
1. Review content for changes in:
1.1 Branding: Visual identity, logos, website design, brand assets
1.2 Integration: New/removed integrations, integration updates
1.3 Pricing: Costs, tiers, promotional offers
1.4 Product: Features, updates, removals, modifications
1.5 Positioning: Market messaging, target audience, value proposition
1.6 Partnerships: New/terminated partnerships, program changes
2. For each change identified:
2.1 Start with action verbs or clear transition phrases
2.2 List each change as a complete, detailed statement
2.3 Include relevant context (numbers, timeframes, features)
2.4 Separate related but distinct changes into individual items
Respond ONLY with a JSON object with the keys branding, integration, pricing, product, positioning and partnership, each an array of strings (empty when nothing changed)."""

SUMMARY_SYSTEM_PROMPT = """You're a newsletter copywriter. Voice: sharp advisor who distills competitor moves into one-liners. Tone: human, conversational, simple words, zero jargon.
Analyze the competitive intelligence report and respond ONLY with a JSON object with the keys branding, integration, pricing, positioning, product and partnership, each a short summary string of the key changes in that category."""


class TextDiffer(Protocol):
    async def categorize(self, text_a: str, text_b: str) -> DiffAnalysis: ...

    async def summarize(self, report: AggregatedReport) -> dict[str, str]: ...


def _strip_fences(raw: str) -> str:
    return raw.replace("```json", "").replace("```", "").strip()


def parse_diff_analysis(raw: str) -> DiffAnalysis:
    try:
        payload = json.loads(_strip_fences(raw))
    except json.JSONDecodeError as exc:
        raise DiffRefusedError(f"diff analysis refused: {exc}") from exc
    if not isinstance(payload, dict):
        raise DiffRefusedError("diff analysis refused: response is not an object")
    try:
        return DiffAnalysis.model_validate({k: payload.get(k) or [] for k in CATEGORIES})
    except ValidationError as exc:
        raise DiffRefusedError(f"diff analysis refused: {exc.error_count()} invalid fields") from exc


def parse_summaries(raw: str) -> dict[str, str]:
    try:
        payload = json.loads(_strip_fences(raw))
    except json.JSONDecodeError as exc:
        raise DiffRefusedError(f"report summary refused: {exc}") from exc
    if not isinstance(payload, dict):
        raise DiffRefusedError("report summary refused: response is not an object")
    return {k: str(payload[k]) for k in CATEGORIES if payload.get(k)}


class GeminiTextDiffer:
    def __init__(
        self,
        *,
        api_key: str,
        model_name: str,
        diff_temperature: float = 1.0,
        summary_temperature: float = 0.3,
        request_timeout_s: float = 120,
    ) -> None:
        self.api_key = api_key
        self.model_name = model_name
        self.diff_temperature = diff_temperature
        self.summary_temperature = summary_temperature
        self.request_timeout_s = request_timeout_s
        self._configured = False

    def _model(self, system_instruction: str):
        if not self.api_key:
            raise LLMUnavailableError("GEMINI_API_KEY not configured")
        import google.generativeai as genai

        if not self._configured:
            genai.configure(api_key=self.api_key)
            self._configured = True
        return genai.GenerativeModel(self.model_name, system_instruction=system_instruction)

    async def _generate(self, system_instruction: str, prompt: str, temperature: float) -> str:
        model = self._model(system_instruction)
        config: dict[str, Any] = {
            "temperature": temperature,
            "max_output_tokens": 2048,
            "response_mime_type": "application/json",
        }
        response = await asyncio.to_thread(
            model.generate_content,
            prompt,
            generation_config=config,
            request_options={"timeout": self.request_timeout_s},
        )
        try:
            return response.text
        except ValueError as exc:
            # Raised by the SDK when the candidate was blocked or empty.
            raise DiffRefusedError(f"model returned no content: {exc}") from exc

    async def categorize(self, text_a: str, text_b: str) -> DiffAnalysis:
        prompt = (
            "Compare these two versions of content and identify changes:\n\n"
            f"Version 1:\n{text_a}\n\nVersion 2:\n{text_b}"
        )
        raw = await self._generate(DIFF_SYSTEM_PROMPT, prompt, self.diff_temperature)
        analysis = parse_diff_analysis(raw)
        logger.info(
            "Diff categorized",
            extra={"changes": {k: len(v) for k, v in analysis.model_dump().items()}},
        )
        return analysis

    async def summarize(self, report: AggregatedReport) -> dict[str, str]:
        prompt = (
            "Analyze this competitive intelligence report and provide summaries:\n"
            + json.dumps(report.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False)
        )
        raw = await self._generate(SUMMARY_SYSTEM_PROMPT, prompt, self.summary_temperature)
        return parse_summaries(raw)
