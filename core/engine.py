"""
Inference Engine — LLM-powered email analysis and reply drafting.

Two operations are consumed by the pipeline:
- analyze(email)            → AnalysisResult (category, sentiment, priority, ...)
- generate(email, analysis) → reply body text

Rate limits, transport errors and unparseable model output all surface as
InferenceError so the calling stage can retry them.
"""
from __future__ import annotations

import abc
import json
import structlog
from typing import Any, Optional

from config.settings import LLMConfig, get_settings
from core.errors import InferenceError
from models.schemas import AnalysisResult, Email, Priority, Sentiment

logger = structlog.get_logger()

ANALYSIS_SYSTEM_PROMPT = (
    "You are an email analysis assistant. Your task is to analyze emails and provide "
    "insights about their content, sentiment, priority, and suggest appropriate responses."
)

RESPONSE_SYSTEM_PROMPT = (
    "You are an email assistant. Your task is to write professional, helpful, and "
    "contextually appropriate responses to emails."
)

FALLBACK_REPLY = "I apologize, but I was unable to generate a response."


class InferenceClient(abc.ABC):
    """Interface the analysis and response stages depend on."""

    @abc.abstractmethod
    async def analyze(self, email: Email) -> AnalysisResult:
        ...

    @abc.abstractmethod
    async def generate(self, email: Email, analysis: AnalysisResult) -> str:
        ...


class InferenceEngine(InferenceClient):
    """
    Analyzes and answers emails using OpenAI or Claude.
    Provider and model come from the ``llm`` settings section.
    """

    def __init__(self, config: LLMConfig = None, client: Any = None):
        self.config = config or get_settings().llm
        self._client = client
        self._provider = self.config.provider

    @property
    def is_openai(self) -> bool:
        return self._provider == "openai"

    def _get_client(self):
        if self._client is None:
            if self.is_openai:
                from openai import AsyncOpenAI
                self._client = AsyncOpenAI(api_key=self.config.api_key)
            else:
                import anthropic
                self._client = anthropic.AsyncAnthropic(api_key=self.config.api_key)
            logger.info("llm_client_initialized", provider=self._provider,
                        model=self.config.model)
        return self._client

    async def _call_llm(
        self,
        system: str,
        prompt: str,
        temperature: float,
        json_mode: bool = False,
    ) -> str:
        """Unified LLM call that handles both OpenAI and Anthropic APIs."""
        client = self._get_client()
        try:
            if self.is_openai:
                kwargs: dict[str, Any] = {}
                if json_mode:
                    kwargs["response_format"] = {"type": "json_object"}
                response = await client.chat.completions.create(
                    model=self.config.model,
                    temperature=temperature,
                    max_tokens=self.config.max_tokens,
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": prompt},
                    ],
                    **kwargs,
                )
                return response.choices[0].message.content or ""

            response = await client.messages.create(
                model=self.config.model,
                max_tokens=self.config.max_tokens,
                temperature=temperature,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
            return response.content[0].text if response.content else ""
        except Exception as e:
            raise InferenceError(f"{self._provider} call failed: {e}") from e

    # ── Operations ────────────────────────────────────────────

    async def analyze(self, email: Email) -> AnalysisResult:
        raw = await self._call_llm(
            system=ANALYSIS_SYSTEM_PROMPT,
            prompt=self.build_analysis_prompt(email),
            temperature=self.config.analysis_temperature,
            json_mode=True,
        )
        analysis = self.parse_analysis(raw)
        logger.info("email_analyzed",
                    email_id=email.id,
                    priority=analysis.priority.value,
                    category=analysis.category)
        return analysis

    async def generate(self, email: Email, analysis: AnalysisResult) -> str:
        text = await self._call_llm(
            system=RESPONSE_SYSTEM_PROMPT,
            prompt=self.build_response_prompt(email, analysis),
            temperature=self.config.response_temperature,
        )
        logger.info("reply_generated", email_id=email.id, chars=len(text))
        return text or FALLBACK_REPLY

    # ── Parsing ───────────────────────────────────────────────

    @staticmethod
    def parse_analysis(raw: str) -> AnalysisResult:
        text = (raw or "").strip()
        if text.startswith("```"):
            text = text.split("```")[1].strip()
            if text.startswith("json"):
                text = text[4:].strip()
        try:
            data = json.loads(text or "{}")
        except json.JSONDecodeError as e:
            raise InferenceError(f"analysis output is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise InferenceError("analysis output is not a JSON object")

        keywords = data.get("keywords") or []
        if not isinstance(keywords, list):
            keywords = [str(keywords)]

        return AnalysisResult(
            category=str(data.get("category") or "uncategorized"),
            sentiment=_enum_or_default(Sentiment, data.get("sentiment"), Sentiment.NEUTRAL),
            priority=_enum_or_default(Priority, data.get("priority"), Priority.MEDIUM),
            summary=str(data.get("summary") or "No summary available"),
            keywords=[str(k) for k in keywords],
            suggested_response=data.get("suggestedResponse") or data.get("suggested_response"),
        )

    # ── Prompt Construction ───────────────────────────────────

    @staticmethod
    def build_analysis_prompt(email: Email) -> str:
        return f"""Please analyze the following email and provide a JSON response with these fields:
- category: The category this email falls into (e.g., "inquiry", "complaint", "request", "spam", etc.)
- sentiment: The sentiment of the email ("positive", "neutral", or "negative")
- priority: How urgent this email is ("high", "medium", or "low")
- summary: A brief summary of the email content (max 2 sentences)
- keywords: An array of key terms from the email (max 5)
- suggestedResponse: A brief suggestion on how to respond

EMAIL:
From: {email.sender}
Subject: {email.subject}
Body:
{email.body}"""

    @staticmethod
    def build_response_prompt(email: Email, analysis: AnalysisResult) -> str:
        return f"""Please write a professional response to the following email. The response should:
- Be appropriate for the email's sentiment ({analysis.sentiment.value}) and priority ({analysis.priority.value})
- Address the main points mentioned in the email
- Be concise but thorough
- Have a professional tone
- Include a greeting and sign-off

EMAIL:
From: {email.sender}
Subject: {email.subject}
Body:
{email.body}

Analysis:
Category: {analysis.category}
Summary: {analysis.summary}"""


def _enum_or_default(enum_cls, value: Optional[Any], default):
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return default
