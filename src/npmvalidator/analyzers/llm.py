"""AI-generated verdicts with an ordered chain of LLM providers."""

import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from npmvalidator.config import Settings
from npmvalidator.exceptions import EnrichmentUnavailableError
from npmvalidator.models.schemas import AnalysisResult, Rating, Recommendation, Verdict

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert software engineer specialising in npm package evaluation. "
    "You analyse packages based on security, quality, maintenance, and popularity metrics. "
    "Provide honest, balanced assessments that help developers make informed decisions. "
    "Always respond in valid JSON format."
)

MAINTENANCE_GUIDELINES = """IMPORTANT MAINTENANCE GUIDELINES:
- If "Days Since Last Publish" > 365 days (1 year), the package is likely UNMAINTAINED
- If "Days Since Last Publish" > 180 days (6 months), consider it STALE and rate maintenance as "fair" or "poor"
- If "Days Since Last Commit" > 180 days AND "Days Since Last Publish" > 180 days, it's likely ABANDONED
- High open issues count (>100) combined with no recent updates is a RED FLAG
- UNMAINTAINED packages should be "not-recommended" or "use-with-caution" at best
"""

RESPONSE_FORMAT = """Based on this data, provide:
1. A brief summary (2-3 sentences) - MUST mention if package appears unmaintained/stale
2. Overall recommendation: "recommended", "use-with-caution", or "not-recommended"
3. Key strengths (array of 3-5 strings)
4. Any concerns (array of 2-4 strings, or ["None"] if no concerns) - MUST flag lack of maintenance if applicable
5. Overall score (0-100) - Deduct significant points for unmaintained packages
6. Security rating: "excellent", "good", "fair", or "poor"
7. Quality rating: "excellent", "good", "fair", or "poor"
8. Maintenance rating: "excellent", "good", "fair", or "poor" - Base this on actual dates, not just the score
9. Reasoning for your recommendation (2-3 sentences) - Explain maintenance concerns if present

Respond ONLY with valid JSON in this exact format:
{
  "summary": "string",
  "recommendation": "recommended|use-with-caution|not-recommended",
  "strengths": ["string1", "string2", "string3"],
  "concerns": ["string1", "string2"],
  "overallScore": number,
  "securityRating": "excellent|good|fair|poor",
  "qualityRating": "excellent|good|fair|poor",
  "maintenanceRating": "excellent|good|fair|poor",
  "reasoning": "string"
}

Do not include any text outside the JSON object."""


class ProviderError(Exception):
    """Raised when an LLM provider cannot produce a response."""

    def __init__(self, provider: str, kind: str, message: str) -> None:
        super().__init__(message)
        self.provider = provider
        self.kind = kind
        self.message = message


# =============================================================================
# Provider response schemas
# =============================================================================


class _GeminiPart(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str = ""


class _GeminiContent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    parts: list[_GeminiPart] = Field(default_factory=list)


class _GeminiCandidate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content: _GeminiContent


class _GeminiResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    candidates: list[_GeminiCandidate] = Field(min_length=1)


class _ChatMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content: str | None = None


class _ChatChoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: _ChatMessage


class _ChatResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    choices: list[_ChatChoice] = Field(min_length=1)


class _OllamaResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    response: str


R = TypeVar("R", bound=BaseModel)


def build_prompt(result: AnalysisResult, now: datetime | None = None) -> str:
    """Create the analysis prompt from an aggregated result."""
    metadata = result.metadata
    now = now or result.analyzed_at

    lines = [
        "Analyse this npm package and provide a detailed assessment:",
        "",
        f"Package: {result.name}",
        f"Version: {metadata.version or 'Unknown'}",
        f"License: {metadata.license or 'Unknown'}",
        f"Description: {metadata.description or 'No description'}",
        f"npm URL: {result.npm_url}",
    ]
    days = metadata.days_since_publish(now)
    if days is not None:
        if days > 0:
            lines.append(f"Days Since Last Publish: {days} days ago")
        else:
            lines.append("Package recently published (within the last day)")
    if metadata.deprecated:
        lines.append(f"DEPRECATED: {metadata.deprecated}")
    lines.append("")

    if result.downloads:
        lines += [f"Downloads (last month): {result.downloads.downloads:,}", ""]

    if result.popularity and result.popularity.dependents is not None:
        lines += [f"Dependent packages: {result.popularity.dependents:,}", ""]

    repo = result.repository
    if repo:
        lines += [
            "GitHub Statistics:",
            f"- Stars: {repo.stars:,}",
            f"- Forks: {repo.forks:,}",
            f"- Open Issues: {repo.open_issues:,}",
        ]
        commit_days = repo.days_since_push(now)
        if commit_days is not None:
            if commit_days > 0:
                lines.append(f"- Days Since Last Commit: {commit_days} days ago")
            else:
                lines.append("- Recently committed (within the last day)")
        if repo.is_archived:
            lines.append("- Repository is ARCHIVED")
        lines += [f"- Language: {repo.language or 'Unknown'}", ""]

    if "security" not in result.errors:
        security = result.security
        lines += [
            "Security Assessment:",
            f"- Total Vulnerabilities: {security.total_count}",
            f"- Critical: {security.critical}",
            f"- High: {security.high}",
            f"- Moderate: {security.moderate}",
            f"- Low: {security.low}",
            "",
        ]

    if metadata.readme:
        lines += [
            f"README Content (first {len(metadata.readme)} characters):",
            metadata.readme,
            "",
            "CRITICAL: Check the README above for:",
            '- Deprecation notices (e.g., "no longer maintained", "deprecated", "unmaintained")',
            '- Migration warnings (e.g., "please use X instead", "consider switching to Y")',
            '- Abandonment notices (e.g., "this project is archived", "not actively developed")',
            "- Security warnings or end-of-life announcements",
            'If ANY of these are present, the package MUST be rated as "not-recommended" '
            'or "use-with-caution" at best!',
            "",
        ]

    return "\n".join(lines) + "\n" + MAINTENANCE_GUIDELINES + "\n" + RESPONSE_FORMAT


def _string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [item for item in value if isinstance(item, str) and item.strip()]
    return []


def _enum_or_default(enum_cls, value: Any, default):
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return default


def parse_verdict(text: str) -> Verdict:
    """Parse an LLM response into a Verdict.

    Tolerates code fences, surrounding prose and trailing commas. Missing or
    unknown field values fall back to neutral defaults.

    Raises:
        ValueError: If the response is not text or holds no JSON object.
    """
    if not isinstance(text, str):
        raise ValueError(f"Expected text response, got {type(text).__name__}")
    cleaned = re.sub(r"```(?:json)?", "", text).strip()
    match = re.search(r"\{.*\}", cleaned, re.DOTALL)
    if not match:
        raise ValueError("No JSON found in response")

    json_text = re.sub(r",(\s*[\]}])", r"\1", match.group(0))
    try:
        data = json.loads(json_text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Could not extract JSON from response: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")

    try:
        score = int(float(data.get("overallScore", 50)))
    except (TypeError, ValueError):
        score = 50

    strengths = _string_list(data.get("strengths"))
    concerns = _string_list(data.get("concerns"))
    summary = str(data.get("summary") or "")

    return Verdict(
        summary=summary,
        recommendation=_enum_or_default(
            Recommendation, data.get("recommendation"), Recommendation.USE_WITH_CAUTION
        ),
        strengths=strengths or ["Unable to identify specific strengths from data"],
        concerns=concerns or ["Unable to identify specific concerns from data"],
        overall_score=min(100, max(0, score)),
        security_rating=_enum_or_default(Rating, data.get("securityRating"), Rating.FAIR),
        quality_rating=_enum_or_default(Rating, data.get("qualityRating"), Rating.FAIR),
        maintenance_rating=_enum_or_default(Rating, data.get("maintenanceRating"), Rating.FAIR),
        reasoning=str(data.get("reasoning") or summary or "Analysis based on package metrics"),
    )


class VerdictProvider(ABC):
    """One LLM backend able to complete a prompt."""

    label: str = "LLM"

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self._client = client

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Whether credentials or endpoints for this provider are set."""
        ...

    @abstractmethod
    async def complete(self, system: str, prompt: str) -> str:
        """Return the raw text response for a prompt.

        Raises:
            ProviderError: If the backend fails or answers unexpectedly.
        """
        ...

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=self.settings.llm_timeout)  # LLM can be slow

    async def _post_json(self, url: str, payload: dict, headers: dict[str, str] | None = None) -> Any:
        client = await self._get_client()
        try:
            response = await client.post(url, json=payload, headers=headers or {})
        except httpx.HTTPError as e:
            raise ProviderError(self.label, "network", f"{self.label} request failed: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

        if response.status_code == 429:
            raise ProviderError(self.label, "rate_limited", f"{self.label} rate limit or quota exceeded")
        if response.status_code in (401, 403):
            raise ProviderError(self.label, "unauthorized", f"{self.label} rejected the API key")
        if response.status_code >= 400:
            raise ProviderError(self.label, "network", f"{self.label} returned HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(self.label, "malformed", f"{self.label} returned invalid JSON") from e

    def _decode(self, schema: type[R], data: Any) -> R:
        """Validate a provider payload against its response schema."""
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            raise ProviderError(
                self.label,
                "malformed",
                f"Unexpected {self.label} response shape: {e.error_count()} invalid field(s)",
            ) from e


class GeminiProvider(VerdictProvider):
    """Google Gemini via the Generative Language REST API."""

    def __init__(self, settings: Settings, model: str, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(settings, client)
        self.model = model
        self.label = model.replace("-", " ").title()

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.google_api_key)

    async def complete(self, system: str, prompt: str) -> str:
        payload = {
            "systemInstruction": {"parts": [{"text": system}]},
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0.2, "responseMimeType": "application/json"},
        }
        data = await self._post_json(
            f"{self.settings.gemini_url}/models/{self.model}:generateContent",
            payload,
            headers={"x-goog-api-key": self.settings.google_api_key or ""},
        )
        body = self._decode(_GeminiResponse, data)
        text = "".join(part.text for part in body.candidates[0].content.parts)
        if not text:
            raise ProviderError(self.label, "malformed", f"{self.label} response has no text")
        return text


class GroqProvider(VerdictProvider):
    """Groq's OpenAI-compatible chat completions API."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(settings, client)
        self.model = settings.groq_model
        self.label = f"{self.model} (Groq)"

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.groq_api_key)

    async def complete(self, system: str, prompt: str) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.7,
            "max_tokens": 2048,
        }
        data = await self._post_json(
            f"{self.settings.groq_url}/chat/completions",
            payload,
            headers={"Authorization": f"Bearer {self.settings.groq_api_key}"},
        )
        body = self._decode(_ChatResponse, data)
        content = body.choices[0].message.content
        if not content:
            raise ProviderError(self.label, "malformed", f"{self.label} response has no content")
        return content


class OllamaProvider(VerdictProvider):
    """A local Ollama model."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(settings, client)
        self.model = settings.ollama_model
        self.label = f"{self.model} (Ollama)"

    @property
    def is_configured(self) -> bool:
        return self.settings.use_ollama

    async def complete(self, system: str, prompt: str) -> str:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "system": system,
            "stream": False,
            "format": "json",
            "options": {
                "temperature": 0.1,  # Low temperature for consistent scoring
            },
        }
        data = await self._post_json(f"{self.settings.ollama_url}/api/generate", payload)
        return self._decode(_OllamaResponse, data).response


class VerdictGenerator:
    """Tries verdict providers in order and returns the first usable verdict.

    Unconfigured providers are skipped. Any provider failure (rate limit,
    outage, unusable output) moves on to the next one.
    """

    def __init__(self, providers: list[VerdictProvider]) -> None:
        self.providers = providers

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
    ) -> "VerdictGenerator":
        """Build the default chain: Gemini models, then Groq, then Ollama."""
        providers: list[VerdictProvider] = [
            GeminiProvider(settings, model, client=client) for model in settings.gemini_models
        ]
        providers.append(GroqProvider(settings, client=client))
        providers.append(OllamaProvider(settings, client=client))
        return cls(providers)

    async def generate(self, result: AnalysisResult, now: datetime | None = None) -> Verdict:
        """Generate a verdict for an aggregated analysis result.

        Raises:
            EnrichmentUnavailableError: If no provider is configured or all failed.
        """
        available = [provider for provider in self.providers if provider.is_configured]
        if not available:
            raise EnrichmentUnavailableError(
                "No AI provider configured (set GOOGLE_API_KEY or GROQ_API_KEY)",
                kind="unconfigured",
            )

        prompt = build_prompt(result, now)
        last_error: ProviderError | None = None

        for provider in available:
            logger.info(f"Attempting analysis with {provider.label}...")
            try:
                text = await provider.complete(SYSTEM_PROMPT, prompt)
                verdict = parse_verdict(text)
            except ProviderError as e:
                last_error = e
            except ValueError as e:
                last_error = ProviderError(provider.label, "malformed", f"Unparseable verdict: {e}")
            else:
                logger.info(f"Analysis completed with {provider.label}")
                return verdict.model_copy(update={"model": provider.label})

            logger.warning(f"{provider.label} failed ({last_error.kind}): {last_error.message}")

        raise EnrichmentUnavailableError(
            f"Failed to analyze package with AI (all providers): {last_error.message}",
            kind=last_error.kind,
        )
