from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-05-01T10:00:00.000Z"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and str(item).strip()]


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, value: Any, default: Optional["Severity"] = None) -> "Severity":
        """Case-insensitive lookup; anything unrecognised falls back to ``default`` (medium)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(str(value).strip().lower())
            except ValueError:
                pass
        return default or cls.MEDIUM


# ============================================================================#
# Analysis payload (returned to the dashboard)
# ============================================================================#

class DiseaseDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    disease_name: str
    scientific_name: Optional[str] = None
    description: str = ""
    causes: List[str] = Field(default_factory=list)
    symptoms: List[str] = Field(default_factory=list)
    prevention: List[str] = Field(default_factory=list)
    treatment: List[str] = Field(default_factory=list)
    severity: Severity = Severity.MEDIUM
    is_contagious: bool = False
    affected_plants: List[str] = Field(default_factory=list)
    cached: bool = Field(default=False, alias="_cached")  # served from the analysis cache

    @field_validator("causes", "symptoms", "prevention", "treatment", "affected_plants", mode="before")
    @classmethod
    def _coerce_lists(cls, value):
        return _string_list(value)

    @field_validator("severity", mode="before")
    @classmethod
    def _coerce_severity(cls, value):
        return Severity.parse(value)


class Prediction(BaseModel):
    label: str
    disease: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    severity: Severity = Severity.MEDIUM
    recommendations: List[str] = Field(default_factory=list)
    details: Optional[DiseaseDetails] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        return max(0.0, min(1.0, float(value)))


class AnalysisMetadata(BaseModel):
    model: str = "plant.id"
    version: str = "v2"
    analysis_provider: str = "Plant.id API"
    analysis_timestamp: str = Field(default_factory=utc_timestamp)


class AnalysisResult(BaseModel):
    health: int = Field(..., ge=0, le=100)
    diseases: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    timestamp: str = Field(default_factory=utc_timestamp)
    confidence: int = Field(..., ge=0, le=100)
    predictions: List[Prediction] = Field(..., min_length=1)
    imageUrl: Optional[str] = None
    metadata: AnalysisMetadata = Field(default_factory=AnalysisMetadata)


class BestMatch(BaseModel):
    commonNames: List[str] = Field(default_factory=list)
    scientificName: str = ""
    score: Optional[float] = None


class PlantInfo(BaseModel):
    bestMatch: BestMatch


class AnalyzeResponse(BaseModel):
    success: bool = True
    analysis: AnalysisResult
    plantInfo: PlantInfo
    timestamp: str


class ErrorBody(BaseModel):
    message: str
    details: Any = None
    code: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorBody


# ============================================================================#
# Uploads
# ============================================================================#

class ImageDescriptor(BaseModel):
    filename: str = "upload"
    content_type: str
    size: int
    width: Optional[int] = None
    height: Optional[int] = None


class StoredObject(BaseModel):
    fileKey: str
    fileName: str
    fileUrl: str
    fileType: str
    fileSize: int
    uploadedAt: str = Field(default_factory=utc_timestamp)


class UploadResponse(StoredObject):
    success: bool = True


# ============================================================================#
# Plant.id provider schema
#
# The provider payload is loosely structured. It is validated once here and
# every absent or malformed field collapses to a documented default, so the
# normalizer never has to null-check.
# ============================================================================#

class PlantIdDisease(BaseModel):
    name: Optional[str] = None  # None when the provider gave no usable name
    description: str = ""
    treatment: List[str] = Field(default_factory=list)
    severity: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            return {}

        name = data.get("name")
        if not name and isinstance(data.get("disease"), dict):
            name = data["disease"].get("name")

        description = data.get("description")
        if isinstance(description, dict):
            description = description.get("value")
        details = data.get("disease_details")
        if not description and isinstance(details, dict):
            description = details.get("description")

        treatment = data.get("treatment")
        if treatment is None and isinstance(details, dict):
            treatment = details.get("treatment")
        if not isinstance(treatment, (list, dict)):
            treatment = data.get("treatments")
        if isinstance(treatment, dict):
            # {"biological": [...], "chemical": [...], "prevention": [...]}
            treatment = [item for items in treatment.values() if isinstance(items, list) for item in items]

        severity = data.get("severity")
        return {
            "name": str(name) if name else None,
            "description": str(description) if isinstance(description, str) else "",
            "treatment": _string_list(treatment),
            "severity": str(severity) if severity is not None else None,
        }


class PlantIdSuggestion(BaseModel):
    plant_name: Optional[str] = None
    probability: Optional[float] = None
    common_names: List[str] = Field(default_factory=list)
    diseases: List[PlantIdDisease] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            return {}

        probability = data.get("probability")
        if isinstance(probability, bool) or not isinstance(probability, (int, float)):
            probability = None

        common_names = data.get("common_names")
        plant_details = data.get("plant_details")
        if not isinstance(common_names, list) and isinstance(plant_details, dict):
            common_names = plant_details.get("common_names")

        diseases = data.get("diseases")
        plant_name = data.get("plant_name")
        return {
            "plant_name": str(plant_name) if plant_name else None,
            "probability": probability,
            "common_names": _string_list(common_names),
            "diseases": [d if isinstance(d, dict) else {} for d in diseases] if isinstance(diseases, list) else [],
        }


class PlantIdResponse(BaseModel):
    suggestions: List[PlantIdSuggestion] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            return {"suggestions": []}
        suggestions = data.get("suggestions")
        if not isinstance(suggestions, list):
            suggestions = []
        return {"suggestions": [s if isinstance(s, dict) else {} for s in suggestions]}


ProviderPayload = Union[PlantIdResponse, Dict[str, Any], None]
