"""
Disease analysis (enrichment) with an in-memory TTL cache.

Given a disease name and a confidence, returns a DiseaseDetails record with
causes, symptoms, prevention and treatment written by a text model (Gemini via
OpenRouter). Results are cached per normalized disease name for one hour.

Callers never see an exception from here: if generation fails they get a stub
record whose severity is derived from the confidence alone.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import Awaitable, Callable, Dict, Optional

from openai import AsyncOpenAI

from leafscan.config import (
    ANALYSIS_MAX_TOKENS,
    ANALYSIS_MODEL,
    ANALYSIS_TEMPERATURE,
    DISEASE_ANALYSIS_TTL,
)
from leafscan.models import DiseaseDetails, Severity
from leafscan.utils.text_processing import parse_json_response, slugify_name

logger = logging.getLogger(__name__)

Generator = Callable[[str, float], Awaitable[DiseaseDetails]]

FALLBACK_DESCRIPTION = "Could not retrieve detailed analysis. Please try again later."


def cache_key(disease_name: str) -> str:
    return f"gemini:analysis:{slugify_name(disease_name)}"


def severity_from_confidence(confidence: float) -> Severity:
    if confidence > 0.7:
        return Severity.HIGH
    if confidence > 0.4:
        return Severity.MEDIUM
    return Severity.LOW


def fallback_analysis(disease_name: str, confidence: float) -> DiseaseDetails:
    """Minimal record returned when the text model is unavailable or answers garbage."""
    return DiseaseDetails(
        disease_name=disease_name,
        description=FALLBACK_DESCRIPTION,
        severity=severity_from_confidence(confidence),
        is_contagious=False,
    )


def is_fallback(details: DiseaseDetails) -> bool:
    return details.description == FALLBACK_DESCRIPTION and not details.cached


# ============================================================================#
# Generation
# ============================================================================#

def build_analysis_prompt(disease_name: str, confidence: float) -> str:
    return f"""You are a plant pathologist. Analyze the plant disease: "{disease_name}" (Confidence: {confidence * 100:.1f}%).

Provide a detailed analysis in the following JSON format. Be specific and include practical information for farmers and gardeners.

{{
  "disease_name": "Common name of the disease",
  "scientific_name": "Scientific name (genus and species if known)",
  "description": "A 2-3 sentence overview of the disease, its impact, and common characteristics.",
  "causes": ["Primary cause", "Contributing factor", "Environmental condition"],
  "symptoms": ["Early symptom", "Progressive symptom", "Advanced symptom"],
  "prevention": ["Cultural practice", "Environmental control", "Preventive treatment"],
  "treatment": ["Immediate action", "Organic treatment", "Chemical treatment (with safety precautions)"],
  "severity": "low/medium/high",
  "is_contagious": true/false,
  "affected_plants": ["Common plant 1", "Common plant 2", "Common plant 3"]
}}

Additional guidelines:
- Keep descriptions concise but informative
- List 3-5 items for each array
- Include both organic and conventional treatment options
- Consider environmental impact in recommendations
- Answer with the JSON object only, inside a ```json code block"""


async def generate_disease_analysis(client: AsyncOpenAI, disease_name: str, confidence: float) -> DiseaseDetails:
    """
    Ask the text model for a structured analysis of *disease_name*.

    Raises:
        ValueError: the answer is not JSON or lacks disease_name / description
        openai.OpenAIError, httpx.HTTPError: provider failures
    """
    response = await client.chat.completions.create(
        model=ANALYSIS_MODEL,
        messages=[{"role": "user", "content": build_analysis_prompt(disease_name, confidence)}],
        temperature=ANALYSIS_TEMPERATURE,
        max_tokens=ANALYSIS_MAX_TOKENS,
    )
    raw_text = response.choices[0].message.content or ""
    logger.debug(f"Text model raw response: {raw_text[:300]}...")

    data = parse_json_response(raw_text)
    if not isinstance(data, dict) or not data.get("disease_name") or not data.get("description"):
        raise ValueError("Incomplete response from text model")

    data.pop("_cached", None)
    data.pop("cached", None)
    return DiseaseDetails.model_validate(data)


async def _unconfigured_generator(disease_name: str, confidence: float) -> DiseaseDetails:
    raise RuntimeError("Text generation client not configured (set OPENROUTER_API_KEY)")


# ============================================================================#
# Cache
# ============================================================================#

@dataclass
class CacheEntry:
    details: DiseaseDetails
    created_at: float


class DiseaseAnalysisCache:
    """
    Keyed store of generated analyses with lazy TTL expiry.

    Entries are never swept; a stale entry is regenerated and overwritten on
    the next read. Each key has its own asyncio.Lock so concurrent misses for
    the same disease trigger a single generation; the lock is dropped as soon
    as no request holds or waits on it.
    """

    def __init__(
        self,
        generator: Generator,
        ttl: float = DISEASE_ANALYSIS_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._generator = generator
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self.hits = 0
        self.misses = 0

    def _fresh_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry and (self._clock() - entry.created_at) < self.ttl:
            return entry
        return None

    def _hit(self, disease_name: str, entry: CacheEntry) -> DiseaseDetails:
        self.hits += 1
        logger.info(f"✓ Cache hit for disease: {disease_name}")
        return entry.details.model_copy(update={"cached": True}, deep=True)

    async def get(self, disease_name: str, confidence: float) -> DiseaseDetails:
        key = cache_key(disease_name)

        entry = self._fresh_entry(key)
        if entry:
            return self._hit(disease_name, entry)

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                return await self._load(key, disease_name, confidence)
        finally:
            # Drop the lock once nobody holds or waits on it
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                self._locks.pop(key, None)

    async def _load(self, key: str, disease_name: str, confidence: float) -> DiseaseDetails:
        # Another request may have filled the entry while we waited
        entry = self._fresh_entry(key)
        if entry:
            return self._hit(disease_name, entry)

        self.misses += 1
        logger.info(f"Generating analysis for disease: {disease_name}")
        try:
            details = await self._generator(disease_name, confidence)
        except Exception as e:
            logger.error(f"Disease analysis generation failed for '{disease_name}': {e}")
            return fallback_analysis(disease_name, confidence)

        details = details.model_copy(update={"cached": False})
        self._entries[key] = CacheEntry(details=details, created_at=self._clock())
        return details.model_copy(deep=True)

    def stats(self) -> dict:
        now = self._clock()
        fresh = sum(1 for e in self._entries.values() if (now - e.created_at) < self.ttl)
        return {
            "entries": len(self._entries),
            "fresh_entries": fresh,
            "hits": self.hits,
            "misses": self.misses,
            "ttl_seconds": self.ttl,
            "storage": "in-memory",
        }

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0
        logger.info("Disease analysis cache cleared")


# Process-wide cache; rebound by configure() during startup
analysis_cache = DiseaseAnalysisCache(_unconfigured_generator)


def configure(client: Optional[AsyncOpenAI], ttl: float = DISEASE_ANALYSIS_TTL) -> DiseaseAnalysisCache:
    """Bind the process-wide cache to a text client (or to the unconfigured stub generator)."""
    global analysis_cache
    generator = partial(generate_disease_analysis, client) if client else _unconfigured_generator
    analysis_cache = DiseaseAnalysisCache(generator, ttl=ttl)
    return analysis_cache


async def get_disease_analysis(disease_name: str, confidence: float) -> DiseaseDetails:
    """Cached analysis for *disease_name*; never raises."""
    return await analysis_cache.get(disease_name, confidence)
