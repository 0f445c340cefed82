import logging
import math
from typing import List, Optional

from pydantic import ValidationError

from leafscan.errors import NoIdentificationError
from leafscan.models import (
    AnalysisMetadata,
    AnalysisResult,
    BestMatch,
    DiseaseDetails,
    ImageDescriptor,
    PlantIdDisease,
    PlantIdResponse,
    PlantIdSuggestion,
    PlantInfo,
    Prediction,
    ProviderPayload,
    Severity,
    utc_timestamp,
)
from leafscan.services.recommendations import generate_recommendations

logger = logging.getLogger(__name__)

HEALTHY_SCORE = 90
MIN_HEALTH_SCORE = 20
DEFAULT_PROBABILITY = 0.6


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def parse_provider_response(raw: ProviderPayload) -> PlantIdResponse:
    """Validate a raw Plant.id payload. Never raises; garbage becomes an empty response."""
    if isinstance(raw, PlantIdResponse):
        return raw
    try:
        return PlantIdResponse.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Malformed identification payload, treating as empty: {e}")
        return PlantIdResponse()


def top_suggestion(response: PlantIdResponse) -> PlantIdSuggestion:
    if not response.suggestions:
        raise NoIdentificationError()
    return response.suggestions[0]


def health_score(suggestion: PlantIdSuggestion) -> int:
    """
    90 when no disease is reported, otherwise an inverse of the plant match
    probability floored at 20. All diseases of one image share this score.
    """
    if not suggestion.diseases:
        return HEALTHY_SCORE
    probability = _clamp(suggestion.probability or DEFAULT_PROBABILITY)
    return max(MIN_HEALTH_SCORE, 100 - _round_half_up(probability * 100 / 2))


def _prediction_confidence(suggestion: PlantIdSuggestion) -> float:
    if suggestion.probability is None:
        return DEFAULT_PROBABILITY
    return _clamp(suggestion.probability)


def _build_prediction(
    disease: Optional[PlantIdDisease],
    suggestion: PlantIdSuggestion,
    confidence: float,
) -> Prediction:
    if disease is not None:
        name = disease.name or "Unknown disease"
        severity = Severity.parse(disease.severity)
        treatment = disease.treatment
        description = disease.description
    else:
        name = f"{suggestion.plant_name} (no disease detected)" if suggestion.plant_name else "Unknown"
        severity = Severity.MEDIUM
        treatment = []
        description = ""

    return Prediction(
        label=name,
        disease=name,
        confidence=confidence,
        severity=severity,
        recommendations=treatment or generate_recommendations(name),
        details=DiseaseDetails(
            disease_name=name,
            description=description,
            treatment=treatment,
            severity=severity,
            affected_plants=suggestion.common_names,
        ),
    )


def normalize_identification(raw: ProviderPayload, image: Optional[ImageDescriptor] = None) -> AnalysisResult:
    """
    Turn a Plant.id identification payload into an AnalysisResult.

    Args:
        raw: provider JSON (dict) or an already validated PlantIdResponse
        image: the submitted image

    Returns:
        AnalysisResult with at least one prediction

    Raises:
        NoIdentificationError: the provider returned no suggestions
    """
    response = parse_provider_response(raw)
    suggestion = top_suggestion(response)

    confidence = _prediction_confidence(suggestion)
    diseases: List[Optional[PlantIdDisease]] = list(suggestion.diseases) or [None]
    predictions = [_build_prediction(d, suggestion, confidence) for d in diseases]

    timestamp = utc_timestamp()
    result = AnalysisResult(
        health=health_score(suggestion),
        diseases=[d.name or "Unknown" for d in suggestion.diseases],
        recommendations=list(predictions[0].recommendations),
        timestamp=timestamp,
        confidence=_round_half_up(_clamp(suggestion.probability or 0) * 100),
        predictions=predictions,
        metadata=AnalysisMetadata(analysis_timestamp=timestamp),
    )

    source = image.filename if image else "image"
    logger.info(
        f"Normalized {source}: plant={suggestion.plant_name or 'Unknown'} "
        f"diseases={len(suggestion.diseases)} health={result.health} confidence={result.confidence}%"
    )
    return result


def build_plant_info(raw: ProviderPayload) -> PlantInfo:
    suggestion = top_suggestion(parse_provider_response(raw))
    return PlantInfo(
        bestMatch=BestMatch(
            commonNames=suggestion.common_names,
            scientificName=suggestion.plant_name or "",
            score=suggestion.probability,
        )
    )
