"""
Narrative LLM Connector
=======================

Turns the derived station indicators into a short plain-English narrative
through a chat-completion endpoint.

Providers:
- local:     LM Studio / any OpenAI-compatible server (default localhost:1234)
- openai:    OpenAI chat completions
- anthropic: Anthropic messages API

The prompt is built only from scalar indicators. The per-day series is
never part of the payload; ``build_station_prompt`` rejects it.
"""

import logging
import re
from typing import Any, Dict, List, Optional

import requests

from hydro_ai_impact.ontology.object_types import NarrativeResponse
from hydro_ai_impact.utils.constants import ConnectorConfig, LLMConfig, LLMEndpoints
from hydro_ai_impact.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class NarrativeError(RuntimeError):
    """Raised when narrative generation fails."""


# =============================================================================
# PROMPTS
# =============================================================================

STATION_ANALYST_SYSTEM_PROMPT = """
You are a water intelligence analyst for a public environmental transparency platform
called Water Intelligence Platform. Your job is to turn structured hydrological sensor
data into clear, factual, human-readable narratives for a general audience that includes
developers, environmental researchers, and concerned citizens.

RULES (follow every one of these strictly):
- Begin your response immediately with the analysis. Never start with "Sure",
  "Certainly", "Here is", "Of course", "Great" or any preamble whatsoever.
- Never explain what you are about to do. Just do it.
- Never invent or estimate numbers not present in the data provided.
- Always cite the actual values from the data in your narrative.
- Write in plain English, with no jargon unless briefly explained.
- Be direct and factual, not alarmist or overly optimistic.
- Always connect water conditions to the AI/datacenter water footprint context.
- If an anomaly is detected, explain what it likely means in plain terms.
- If sustainability score is below 60, flag it as concerning.
- End every response with one concrete, actionable takeaway for the reader
  prefixed with "Takeaway:".
- Maximum 3 short paragraphs. Be concise.
- Do not use bullet points. Write in flowing prose only.
"""

_PREAMBLE_PATTERNS = [
    re.compile(r"^(sure|certainly|of course|great|absolutely|here is|here's|below is)[^.!?\n]*[.!?\n]\s*", re.IGNORECASE),
    re.compile(r"^(as a water intelligence analyst[^.!?\n]*[.!?\n]\s*)", re.IGNORECASE),
]


def _fmt(value: Any, missing: str = "insufficient data") -> str:
    """Render a number the way it reads in the UI: no trailing '.0'."""
    if value is None:
        return missing
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_station_prompt(payload: Dict[str, Any]) -> str:
    """
    Build the user prompt for one station.

    Args:
        payload: Trimmed narrative input (see
                 StationIntelligencePipeline.narrative_input)

    Returns:
        Prompt text

    Raises:
        ValueError: if the payload carries a raw daily series
    """
    if "daily_series" in payload or "daily_series" in (payload.get("water") or {}):
        raise ValueError("Narrative payload must not include the daily series")

    station_id = payload["station_id"]
    station_name = payload.get("station_name") or station_id
    latest = payload.get("latest")
    analytics = payload["analytics"]
    anomaly = analytics["anomaly"]
    ai_impact = payload.get("ai_impact")
    drought_severity = payload.get("drought_severity")
    enrichment = payload.get("enrichment")

    if latest:
        reading = f"Flow: {_fmt(latest['value'])} {latest['unit']} (recorded at {latest['timestamp']})"
    else:
        reading = "No current reading available."

    if anomaly["detected"]:
        anomaly_line = f"DETECTED, severity: {anomaly['severity'].upper()}. {anomaly['message']}"
    else:
        anomaly_line = "None detected, flow within normal range"

    if ai_impact:
        impact = (
            f"Water volume: {ai_impact['water_volume_liters']:,} liters\n"
            f"Energy equivalent: {_fmt(ai_impact['kwh_equivalent'])} kWh\n"
            f"AI inferences equivalent: {ai_impact['inference_equivalent']:,} requests\n"
            f"GPU training hours equivalent: {_fmt(ai_impact['gpu_hours_equivalent'])} hours"
        )
    else:
        impact = "No AI impact data available (no current flow reading)."

    sections: List[str] = [
        "Analyze the following real-time water station data and produce a narrative summary.",
        f"STATION: {station_name} (ID: {station_id})",
        f"CURRENT READING:\n{reading}",
        "ANALYTICS (computed server-side, deterministic):\n"
        f"- 7-day moving average: {_fmt(analytics.get('moving_average_7'))}\n"
        f"- 30-day moving average: {_fmt(analytics.get('moving_average_30'))}\n"
        f"- Volatility index: {_fmt(analytics.get('volatility_index'))} "
        "(scale 0-2, above 0.5 = high volatility)\n"
        f"- Anomaly status: {anomaly_line}\n"
        f"- Sustainability score: {analytics['sustainability_score']}/100",
        f"AI IMPACT EQUIVALENTS (this hour of flow):\n{impact}",
    ]

    if enrichment and enrichment.get("percentile_interpretation"):
        context = f"HISTORICAL CONTEXT: {enrichment['percentile_interpretation']}"
        if enrichment.get("record_years"):
            context += f" (based on {enrichment['record_years']} years of record)"
        sections.append(context + ".")

    if enrichment and enrichment.get("station_active") is False and enrichment.get("station_status_message"):
        sections.append(f"STATION STATUS: {enrichment['station_status_message']}")

    if drought_severity and drought_severity != "None":
        sections.append(
            f"DROUGHT CONTEXT: This region is currently under {drought_severity} drought conditions."
        )

    sections.append(
        "Write your 3-paragraph narrative now. Remember: no preamble, cite real numbers,\n"
        'end with "Takeaway:" followed by one actionable sentence.'
    )
    return "\n\n".join(sections) + "\n"


def strip_preamble(text: str) -> str:
    """Remove conversational openers some local models add despite instructions."""
    result = text.strip()
    for pattern in _PREAMBLE_PATTERNS:
        result = pattern.sub("", result).strip()
    return result


# =============================================================================
# CONNECTOR
# =============================================================================

class NarrativeConnector:
    """
    Chat-completion client for station narratives.

    Example:
        connector = NarrativeConnector.from_settings(settings)
        response = connector.generate_station_narrative(payload)
        print(response.narrative)
    """

    def __init__(
        self,
        provider: str = LLMConfig.DEFAULT_PROVIDER,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: int = ConnectorConfig.LLM_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        if provider not in LLMConfig.DEFAULT_MODELS:
            raise ValueError(f"Unknown LLM provider: {provider}")

        self.provider = provider
        self.model = model or LLMConfig.DEFAULT_MODELS[provider]
        self.base_url = (base_url or self._default_base_url(provider)).rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

        logger.info(f"LLM provider: {self.provider} | model: {self.model}")

    @classmethod
    def from_settings(cls, settings, session: Optional[requests.Session] = None) -> "NarrativeConnector":
        return cls(
            provider=settings.llm_provider,
            model=settings.effective_llm_model,
            base_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
            session=session,
        )

    @staticmethod
    def _default_base_url(provider: str) -> str:
        if provider == "anthropic":
            return LLMEndpoints.ANTHROPIC_BASE_URL
        if provider == "openai":
            return LLMEndpoints.OPENAI_BASE_URL
        return LLMEndpoints.LOCAL_BASE_URL

    def provider_info(self) -> Dict[str, Any]:
        return {"provider": self.provider, "model": self.model}

    def generate_station_narrative(self, payload: Dict[str, Any]) -> NarrativeResponse:
        """
        Generate a narrative for a trimmed station payload.

        Raises:
            ValueError: if the payload carries a raw daily series
            NarrativeError: if the provider call fails
        """
        prompt = build_station_prompt(payload)
        logger.info(
            f"Generating narrative for station {payload['station_id']} "
            f"via {self.provider}/{self.model}"
        )
        return self._generate(prompt, system_prompt=STATION_ANALYST_SYSTEM_PROMPT)

    def generate_raw_narrative(self, prompt: str) -> NarrativeResponse:
        """Send a prompt as-is, without the station analyst system prompt."""
        logger.info(f"Generating raw narrative via {self.provider}/{self.model}")
        return self._generate(prompt, system_prompt=None)

    def _generate(self, prompt: str, system_prompt: Optional[str]) -> NarrativeResponse:
        try:
            if self.provider == "anthropic":
                text = self._call_anthropic(prompt, system_prompt)
            else:
                text = self._call_openai_compatible(prompt, system_prompt)
        except requests.exceptions.ConnectionError as e:
            logger.error(f"LLM generation failed: {e}")
            raise NarrativeError(
                f"LLM service unavailable at {self.base_url}. If using LM Studio, ensure the "
                f"local server is running with {self.model} loaded."
            ) from e
        except requests.exceptions.HTTPError as e:
            logger.error(f"LLM generation failed: {e}")
            if e.response is not None and e.response.status_code == 401:
                raise NarrativeError("LLM API key invalid or missing. Check your configuration.") from e
            raise NarrativeError(f"LLM generation failed: {e}") from e
        except (requests.exceptions.RequestException, KeyError, IndexError, TypeError, ValueError) as e:
            logger.error(f"LLM generation failed: {e}")
            raise NarrativeError(f"LLM generation failed: {e}") from e

        return NarrativeResponse(
            narrative=strip_preamble(text),
            provider=self.provider,
            model=self.model,
            generated_at=utc_now().isoformat(),
        )

    def _call_openai_compatible(self, prompt: str, system_prompt: Optional[str]) -> str:
        # Mistral instruct templates reject a system role, so the system
        # prompt is merged into the user turn
        content = f"{system_prompt}\n\n{prompt}" if system_prompt else prompt
        headers = {"Authorization": f"Bearer {self.api_key or 'lm-studio'}"}
        response = self.session.post(
            f"{self.base_url}{LLMEndpoints.CHAT_COMPLETIONS}",
            json={
                "model": self.model,
                "messages": [{"role": "user", "content": content}],
                "temperature": LLMConfig.TEMPERATURE,
                "max_tokens": LLMConfig.MAX_TOKENS,
            },
            headers=headers,
            timeout=self.timeout,
        )
        response.raise_for_status()
        choices = response.json().get("choices") or []
        message = (choices[0].get("message") or {}) if choices else {}
        return (message.get("content") or "No response generated.").strip()

    def _call_anthropic(self, prompt: str, system_prompt: Optional[str]) -> str:
        body: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": LLMConfig.MAX_TOKENS,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            body["system"] = system_prompt
        response = self.session.post(
            f"{self.base_url}{LLMEndpoints.ANTHROPIC_MESSAGES}",
            json=body,
            headers={
                "x-api-key": self.api_key or "",
                "anthropic-version": LLMEndpoints.ANTHROPIC_VERSION,
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        blocks = response.json().get("content") or []
        if blocks and blocks[0].get("type") == "text":
            return blocks[0]["text"].strip()
        return "No response generated."
