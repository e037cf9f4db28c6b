"""Travel context for an adventure plan, generated by an LLM.

The answer has two sections, ``prepare`` (insurance, visa, passport, permits,
vaccines, climate) and ``local_tips`` (emergency numbers, messaging app,
etiquette, tipping, phrases, food). Both must come from the same provider;
a completion missing either section is discarded and the next provider is
asked.
"""

import json
import logging
from typing import Any, Mapping, Optional, Sequence

from app.models import InvalidInputError, UpstreamExhaustedError
from app.services.cache import CacheService
from app.services.fallback import Accumulator, AttemptOutcome, AttemptProfile, FallbackPipeline
from app.services.llm import LlmProvider, extract_json
from app.services.orchestrator import RequestOrchestrator
from app.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

CONTEXT_FIELDS = ("prepare", "local_tips")
DEFAULT_ACTIVITY_TYPE = "multi_activity"
DEFAULT_ACCOMMODATION_TYPE = "mixed"
MAX_FIELD_LENGTH = 2000

SYSTEM_PROMPT = """You generate practical travel information for an adventure plan.

The user message is a JSON object with "location" (city or region, country), "title",
"description", "activity_type" (hiking, biking, road_trip, city_trip, multi_activity, ...)
and "accommodation_type" (camping, hotel, hostel, hut, mixed, ...).

Rules:
- Keep every text field to one or two sentences.
- Base answers on official sources: government travel advisories, embassies, WHO/CDC,
  local tourism boards. If unsure, say "Verify with local authorities before travel."
- Visa guidance is general; note that requirements depend on nationality.
- Include permits only when the activity, location or description calls for them.
- List only vaccines officially required or recommended by WHO/CDC.
- Mention camping rules only when the accommodation involves camping.
- Answer with a single JSON object and nothing else.

The object has exactly two keys:

"prepare": {
  "travel_insurance": {"recommendation", "url", "note"},
  "visa": {"requirement", "medical_insurance_required_for_visa" (boolean), "note"},
  "passport": {"validity_requirement", "blank_pages_required"},
  "permits": [{"type", "details", "how_to_obtain", "cost" (string or null)}],
  "vaccines": {"required": [string], "recommended": [string], "note"},
  "climate": {"location", "data": [{"month", "avg_temp_high_c", "avg_temp_low_c",
              "avg_rain_mm", "avg_rain_days", "avg_daylight_hours"}]}
}

"local_tips": {
  "emergency": {"general_emergency", "police", "ambulance", "fire",
                "mountain_rescue" (null unless relevant)},
  "messaging_app": {"name", "note"},
  "etiquette": [at most 5 strings],
  "tipping": {"practice", "restaurant", "taxi", "hotel"},
  "basic_phrases": [{"english", "local", "pronunciation"}],
  "food_specialties": [{"name", "description"}],
  "food_warnings": [string]
}
"""


def _required(value: Optional[str], name: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise InvalidInputError(
            f"Missing required field: {name}",
            user_message="Location, title and description are required.",
        )
    return cleaned[:MAX_FIELD_LENGTH]


def parse_context(text: str) -> dict[str, Any]:
    """Parse a completion into the two context sections.

    Raises:
        ValueError: If the completion is not a JSON object.
    """
    data = json.loads(extract_json(text))
    if not isinstance(data, dict):
        raise ValueError("completion is not a JSON object")
    return {
        name: data[name] for name in CONTEXT_FIELDS if isinstance(data.get(name), dict)
    }


def classify_completion(text: str, profile: AttemptProfile) -> AttemptOutcome:
    if not text:
        logger.info(f"[CONTEXT] {profile.name} returned an empty completion")
        return AttemptOutcome.SOFT_BLOCK
    return AttemptOutcome.USABLE


class AdventureContextService:
    def __init__(
        self,
        providers: Sequence[LlmProvider],
        limiter: RateLimiter,
        caches: Mapping[str, CacheService],
        timeout: float = 60.0,
    ) -> None:
        self._providers = {provider.name: provider for provider in providers}
        self._profiles = [
            AttemptProfile(name=provider.name, timeout=timeout) for provider in providers
        ]
        self._orchestrator = RequestOrchestrator(
            "adventure_context", caches.get("adventure_context"), limiter
        )

    async def generate(
        self,
        caller_id: Optional[str],
        location: Optional[str],
        title: Optional[str],
        description: Optional[str],
        activity_type: Optional[str] = None,
        accommodation_type: Optional[str] = None,
    ) -> dict[str, Any]:
        request = {
            "location": _required(location, "location"),
            "title": _required(title, "title"),
            "description": _required(description, "description"),
            "activity_type": (activity_type or "").strip() or DEFAULT_ACTIVITY_TYPE,
            "accommodation_type": (accommodation_type or "").strip() or DEFAULT_ACCOMMODATION_TYPE,
        }

        async def produce() -> dict[str, Any]:
            return await self._generate(request)

        return await self._orchestrator.run(caller_id, request, produce)

    async def _generate(self, request: dict[str, str]) -> dict[str, Any]:
        logger.info(f"[CONTEXT] Generating context for {request['title']!r} in {request['location']}")
        payload = json.dumps(request)

        async def fetch(profile: AttemptProfile) -> str:
            return await self._providers[profile.name].complete(SYSTEM_PROMPT, payload)

        pipeline = FallbackPipeline(
            "CONTEXT",
            fetch=fetch,
            parse=lambda text, profile: parse_context(text),
            classify=classify_completion,
        )
        accumulator = Accumulator(CONTEXT_FIELDS, atomic_groups=[CONTEXT_FIELDS])
        result = await pipeline.run(self._profiles, accumulator)

        if not result.complete:
            tried = ", ".join(f"{a.profile}={a.outcome.value}" for a in result.attempts) or "none"
            raise UpstreamExhaustedError(
                f"No provider returned a complete travel context ({tried})",
                user_message="Could not generate travel information right now. Please try again.",
            )
        return {**accumulator.to_dict(), "provider": accumulator.filled_by["prepare"]}
