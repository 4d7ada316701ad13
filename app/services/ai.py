# File: app/services/ai.py
"""AI enrichment for issue reports.

``AIProvider`` is the capability the rest of the app depends on. The base
class is the offline fallback (keyword classifier, no image understanding);
``GeminiProvider`` and ``OpenAIProvider`` call the vendor REST APIs and fall
back to the base behaviour on any transport or parsing error. Enrichment
never fails a request.
"""

from __future__ import annotations

import base64
import json
import logging
import threading
import time
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Optional

import requests
from pydantic import BaseModel, Field, ValidationError

from app.core.config import Settings, settings as app_settings

logger = logging.getLogger(__name__)

CATEGORIES = (
    "pothole", "street_light", "drainage", "traffic_signal", "road_damage", "sidewalk",
    "graffiti", "garbage", "water_leak", "park_maintenance", "noise_complaint", "other",
)

ANALYZE_PROMPT = (
    "Analyze this civic infrastructure image and provide:\n"
    "1. A detailed description of what you see\n"
    "2. Identify any infrastructure issues (potholes, broken lights, drainage problems, etc.)\n"
    "3. Assess the severity level (low, medium, high)\n"
    f"4. Suggest the most appropriate category from: {', '.join(CATEGORIES)}\n"
    "5. Provide a confidence score (0-1) for your analysis\n\n"
    "Respond in JSON format with keys: description, issues, severity, suggestedCategory, confidence"
)
DESCRIBE_PROMPT = (
    "Provide a clear, concise description of this civic infrastructure image. Focus on what "
    "infrastructure elements are visible and any issues that need attention."
)
CATEGORIZE_PROMPT = (
    "You are a civic issue categorization system. Based on the issue title and description, "
    f"classify it into one of these categories: {', '.join(CATEGORIES)}. "
    'Respond with JSON: {"suggestedCategory": ..., "confidence": 0-1, "reasoning": ..., '
    '"priority": "low|medium|high|urgent"}'
)


class ImageAnalysis(BaseModel):
    description: str = "AI analysis completed"
    issues: list[str] = []
    severity: str = "medium"
    suggested_category: str = Field(default="other", alias="suggestedCategory")
    confidence: float = 0.5
    provider: str = "unknown"
    processed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"populate_by_name": True}

    def as_record(self) -> dict:
        return {
            "description": self.description,
            "issues": self.issues,
            "severity": self.severity,
            "suggestedCategory": self.suggested_category,
            "confidence": self.confidence,
            "provider": self.provider,
            "processedAt": self.processed_at.isoformat(),
        }


class Categorization(BaseModel):
    suggested_category: str = Field(default="other", alias="suggestedCategory")
    confidence: float = 0.3
    reasoning: str = "No specific keywords detected"
    priority: Optional[str] = None
    source: str = "default"

    model_config = {"populate_by_name": True}


# ---------------------------------------------------------------------------
# Local heuristics
# ---------------------------------------------------------------------------

class KeywordClassifier:
    """Deterministic category guess from keywords; first matching category wins."""

    KEYWORDS = {
        "pothole": ["pothole", "hole", "road damage", "asphalt", "pavement", "crack"],
        "street_light": ["light", "lamp", "lighting", "dark", "bulb", "illumination"],
        "drainage": ["drain", "water", "flood", "sewer", "drainage", "runoff"],
        "traffic_signal": ["traffic", "signal", "light", "intersection", "stop", "yield"],
        "road_damage": ["road", "street", "damage", "surface", "repair"],
        "sidewalk": ["sidewalk", "walkway", "pedestrian", "path", "curb"],
        "graffiti": ["graffiti", "vandalism", "spray", "tag", "defacement"],
        "garbage": ["garbage", "trash", "litter", "waste", "dump", "rubbish"],
        "water_leak": ["leak", "burst", "pipe", "water", "flooding"],
        "park_maintenance": ["park", "playground", "equipment", "bench", "recreation"],
        "noise_complaint": ["noise", "loud", "construction", "disturbance"],
    }

    def classify(self, text: str) -> Categorization:
        lowered = (text or "").lower()
        for category, terms in self.KEYWORDS.items():
            matched = [t for t in terms if t in lowered]
            if matched:
                return Categorization(
                    suggested_category=category,
                    confidence=min(0.7 + len(matched) * 0.1, 0.95),
                    reasoning=f"Detected keywords: {', '.join(matched)}",
                    source="keyword_matching",
                )
        return Categorization()


URGENT_KEYWORDS = ["emergency", "dangerous", "unsafe", "hazard", "urgent", "critical"]
HIGH_KEYWORDS = ["major", "severe", "broken", "damaged", "flooding"]
LOW_KEYWORDS = ["minor", "small", "slight", "cosmetic"]
CATEGORY_PRIORITIES = {
    "water_leak": "high",
    "traffic_signal": "high",
    "drainage": "medium",
    "pothole": "medium",
    "road_damage": "medium",
    "street_light": "medium",
    "sidewalk": "low",
    "graffiti": "low",
    "garbage": "low",
    "park_maintenance": "low",
    "noise_complaint": "low",
    "other": "medium",
}


def estimate_priority(category: str, description: str, analysis: Optional[ImageAnalysis] = None) -> str:
    text = f"{description or ''} {analysis.description if analysis else ''}".lower()

    if any(k in text for k in URGENT_KEYWORDS):
        return "urgent"
    if category in ("water_leak", "traffic_signal", "drainage"):
        if any(k in text for k in HIGH_KEYWORDS):
            return "high"
    if category in ("pothole", "road_damage", "street_light"):
        if any(k in text for k in HIGH_KEYWORDS):
            return "high"
        if any(k in text for k in LOW_KEYWORDS):
            return "low"
        return "medium"
    return CATEGORY_PRIORITIES.get(category, "medium")


RESOLUTION_PLAYBOOK = {
    "pothole": {
        "estimatedTime": "3-7 days",
        "department": "Public Works - Street Maintenance",
        "steps": [
            "Report will be assessed by street maintenance team",
            "Pothole will be marked for safety",
            "Materials will be prepared for permanent repair",
            "Repair work will be scheduled and completed",
        ],
    },
    "street_light": {
        "estimatedTime": "1-3 days",
        "department": "Public Works - Electrical",
        "steps": [
            "Electrical team will assess the issue",
            "Determine if bulb replacement or fixture repair is needed",
            "Schedule maintenance work",
            "Complete repair and test functionality",
        ],
    },
    "drainage": {
        "estimatedTime": "2-5 days",
        "department": "Public Works - Water Management",
        "steps": [
            "Water management team will inspect the area",
            "Clear blockages if present",
            "Assess infrastructure for damage",
            "Implement repair or improvement measures",
        ],
    },
}
DEFAULT_PLAYBOOK = {
    "estimatedTime": "3-10 days",
    "department": "Public Works",
    "steps": [
        "Issue will be reviewed by relevant department",
        "On-site assessment will be conducted",
        "Appropriate action will be determined",
        "Work will be scheduled and completed",
    ],
}


def resolution_suggestions(category: str, priority: str = "medium") -> dict:
    plan = RESOLUTION_PLAYBOOK.get(category, DEFAULT_PLAYBOOK)
    return {**plan, "steps": list(plan["steps"]), "priority": priority, "source": "fallback_suggestions"}


class UsageStats:
    """Process-wide counters for remote model calls."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.calls = 0
        self.failures = 0
        self.total_seconds = 0.0
        self.last_call_at: Optional[datetime] = None

    def record(self, elapsed: float, ok: bool) -> None:
        with self._lock:
            self.calls += 1
            if not ok:
                self.failures += 1
            self.total_seconds += elapsed
            self.last_call_at = datetime.now(timezone.utc)

    def snapshot(self) -> dict:
        with self._lock:
            average_ms = round(self.total_seconds * 1000 / self.calls) if self.calls else 0
            return {
                "analysisCount": self.calls,
                "failedCount": self.failures,
                "averageResponseTime": average_ms,
                "lastUpdate": self.last_call_at.isoformat() if self.last_call_at else None,
            }


usage = UsageStats()


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

def _strip_code_fences(text: str) -> str:
    value = text.strip()
    if value.startswith("```"):
        lines = value.splitlines()
        if lines and lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].startswith("```"):
            lines = lines[:-1]
        value = "\n".join(lines).strip()
    return value


def _extract_json(text: str) -> dict:
    candidate = _strip_code_fences(text)
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        start = candidate.find("{")
        end = candidate.rfind("}")
        if start < 0 or end <= start:
            raise ValueError("Could not extract valid JSON from model output")
        parsed = json.loads(candidate[start : end + 1])
    if not isinstance(parsed, dict):
        raise ValueError("Model output is not a JSON object")
    return parsed


def _clean_category(value: Any) -> str:
    value = str(value or "").strip().lower()
    return value if value in CATEGORIES else "other"


class AIProvider:
    """Offline provider: keyword categorization and no image understanding."""

    name = "none"
    classifier = KeywordClassifier()

    @property
    def available(self) -> bool:
        return False

    def analyze_image(self, data: bytes, content_type: str) -> Optional[ImageAnalysis]:
        return None

    def describe_image(self, data: bytes, content_type: str) -> Optional[str]:
        return None

    def categorize(self, title: str, description: str) -> Categorization:
        return self.classifier.classify(f"{title} {description}")

    def suggest_resolution(self, category: str, description: str, priority: str = "medium") -> dict:
        return resolution_suggestions(category, priority)

    def status(self) -> dict:
        return {
            "available": self.available,
            "provider": self.name,
            "features": {
                "imageAnalysis": self.available,
                "textClassification": True,
                "descriptionGeneration": self.available,
            },
        }

    def models(self) -> list[str]:
        return []

    # -- shared plumbing for the REST providers --

    def _ask(self, prompt: str, image: Optional[tuple[bytes, str]], timeout: float, max_tokens: int) -> str:
        raise NotImplementedError

    def _analysis_from_text(self, text: str) -> ImageAnalysis:
        try:
            parsed = _extract_json(text)
        except ValueError:
            return ImageAnalysis(description=text, confidence=0.3, provider=self.name)
        try:
            analysis = ImageAnalysis.model_validate({**parsed, "provider": self.name})
        except ValidationError:
            return ImageAnalysis(description=text, confidence=0.3, provider=self.name)
        analysis.suggested_category = _clean_category(analysis.suggested_category)
        return analysis


class _RemoteProvider(AIProvider):
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @property
    def available(self) -> bool:
        return True

    def _call(self, prompt: str, image: Optional[tuple[bytes, str]], timeout: float, max_tokens: int) -> str:
        started = time.monotonic()
        ok = False
        try:
            text = self._ask(prompt, image, timeout, max_tokens)
            ok = True
            return text
        finally:
            usage.record(time.monotonic() - started, ok)

    def analyze_image(self, data: bytes, content_type: str) -> Optional[ImageAnalysis]:
        try:
            text = self._call(ANALYZE_PROMPT, (data, content_type), self.settings.ai_image_timeout_seconds, 500)
        except (requests.RequestException, KeyError, IndexError, ValueError) as exc:
            logger.warning("%s image analysis failed: %s", self.name, exc)
            return ImageAnalysis(
                description="AI analysis unavailable - manual review required",
                confidence=0.1,
                provider="fallback",
            )
        return self._analysis_from_text(text)

    def describe_image(self, data: bytes, content_type: str) -> Optional[str]:
        try:
            text = self._call(DESCRIBE_PROMPT, (data, content_type), self.settings.ai_image_timeout_seconds, 200)
        except (requests.RequestException, KeyError, IndexError, ValueError) as exc:
            logger.warning("%s image description failed: %s", self.name, exc)
            return None
        return text.strip() or None

    def categorize(self, title: str, description: str) -> Categorization:
        prompt = f"{CATEGORIZE_PROMPT}\n\nTitle: {title}\nDescription: {description}"
        try:
            text = self._call(prompt, None, self.settings.ai_text_timeout_seconds, 300)
            parsed = _extract_json(text)
            result = Categorization.model_validate({**parsed, "source": f"{self.name}_categorization"})
        except (requests.RequestException, KeyError, IndexError, ValueError, ValidationError) as exc:
            logger.warning("%s categorization failed, using keywords: %s", self.name, exc)
            fallback = super().categorize(title, description)
            fallback.source = "error_fallback"
            return fallback
        result.suggested_category = _clean_category(result.suggested_category)
        result.confidence = min(max(result.confidence, 0.0), 1.0)
        return result

    def suggest_resolution(self, category: str, description: str, priority: str = "medium") -> dict:
        fallback = resolution_suggestions(category, priority)
        prompt = (
            "Generate resolution suggestions for this civic issue:\n\n"
            f"Category: {category}\nDescription: {description}\nPriority: {priority}\n\n"
            "Provide suggestions as JSON with: estimatedTime, department, steps (array of action "
            "steps), resources, priority"
        )
        try:
            parsed = _extract_json(self._call(prompt, None, self.settings.ai_text_timeout_seconds, 400))
        except (requests.RequestException, KeyError, IndexError, ValueError) as exc:
            logger.warning("%s resolution suggestions failed: %s", self.name, exc)
            return {**fallback, "source": "error_fallback"}
        steps = parsed.get("steps")
        return {
            "estimatedTime": parsed.get("estimatedTime") or fallback["estimatedTime"],
            "department": parsed.get("department") or fallback["department"],
            "steps": steps if isinstance(steps, list) and steps else fallback["steps"],
            "resources": parsed.get("resources"),
            "priority": parsed.get("priority") or priority,
            "source": f"{self.name}_suggestions",
        }


class GeminiProvider(_RemoteProvider):
    name = "gemini"

    def models(self) -> list[str]:
        return [self.settings.gemini_model]

    def _ask(self, prompt: str, image: Optional[tuple[bytes, str]], timeout: float, max_tokens: int) -> str:
        parts: list[dict[str, Any]] = [{"text": prompt}]
        if image:
            data, content_type = image
            parts.append({"inline_data": {"mime_type": content_type, "data": base64.b64encode(data).decode("ascii")}})
        url = f"{self.settings.gemini_api_base_url}/models/{self.settings.gemini_model}:generateContent"
        r = requests.post(
            url,
            params={"key": self.settings.gemini_api_key},
            json={
                "contents": [{"parts": parts}],
                "generationConfig": {"temperature": 0.3, "topK": 32, "topP": 1, "maxOutputTokens": max_tokens},
            },
            timeout=timeout,
        )
        r.raise_for_status()
        payload = r.json()
        texts = [
            p.get("text", "")
            for p in (payload["candidates"][0].get("content") or {}).get("parts", [])
        ]
        text = "\n".join(t for t in texts if t).strip()
        if not text:
            raise ValueError("No response from Gemini API")
        return text


class OpenAIProvider(_RemoteProvider):
    name = "openai"

    def models(self) -> list[str]:
        return sorted({self.settings.openai_vision_model, self.settings.openai_text_model})

    def _ask(self, prompt: str, image: Optional[tuple[bytes, str]], timeout: float, max_tokens: int) -> str:
        if image:
            data, content_type = image
            data_url = f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"
            content: Any = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": data_url, "detail": "high"}},
            ]
            model = self.settings.openai_vision_model
        else:
            content = prompt
            model = self.settings.openai_text_model
        r = requests.post(
            f"{self.settings.openai_api_base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self.settings.openai_api_key}"},
            json={
                "model": model,
                "messages": [{"role": "user", "content": content}],
                "max_tokens": max_tokens,
                "temperature": 0.3,
            },
            timeout=timeout,
        )
        r.raise_for_status()
        text = r.json()["choices"][0]["message"].get("content")
        if not isinstance(text, str) or not text.strip():
            raise ValueError("No response from OpenAI API")
        return text.strip()


def build_ai_provider(settings: Settings) -> AIProvider:
    if settings.gemini_api_key:
        provider: AIProvider = GeminiProvider(settings)
    elif settings.openai_api_key:
        provider = OpenAIProvider(settings)
    else:
        provider = AIProvider()
    logger.info("AI provider: %s", provider.name)
    return provider


@lru_cache
def get_ai_provider() -> AIProvider:
    return build_ai_provider(app_settings)
