import logging

from fastapi import APIRouter, Query, Request
from starlette.datastructures import UploadFile

from leafscan import config, dependencies
from leafscan.errors import InvalidRequestError
from leafscan.models import AnalyzeResponse, DiseaseDetails, ErrorResponse
from leafscan.services.analysis import analyze_image, read_upload
from leafscan.services.disease_analysis import get_disease_analysis

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


async def read_form_file(request: Request, field: str) -> UploadFile:
    """Pull a file field out of a multipart request, mapping every failure to a 400."""
    content_type = request.headers.get("content-type", "")
    if "multipart/form-data" not in content_type:
        logger.error(f"Invalid content type: {content_type}")
        raise InvalidRequestError(
            "Invalid content type",
            code="INVALID_CONTENT_TYPE",
            details="Content type must be multipart/form-data",
        )

    try:
        form = await request.form()
    except Exception as e:
        logger.error(f"Error parsing form data: {e}")
        raise InvalidRequestError("Invalid form data", code="INVALID_FORM_DATA", details={"error": str(e)})

    value = form.get(field)
    if value is None:
        raise InvalidRequestError(f"No {field} file provided", code="NO_IMAGE", details={"formKeys": list(form.keys())})
    if not isinstance(value, UploadFile):
        raise InvalidRequestError("Invalid file format", code="INVALID_FILE")
    return value


@router.post("/api/analyze", response_model=AnalyzeResponse, responses=ERROR_RESPONSES)
async def analyze(request: Request):
    """
    Analyze a leaf photo (multipart field ``image``).

    Returns the normalized Plant.id result with health score, predictions and
    recommendations.
    """
    logger.info("Starting analysis request...")
    upload = await read_form_file(request, "image")
    data = await read_upload(upload)

    storage = None
    if config.STORE_UPLOADS and dependencies.supabase_client is not None:
        storage = dependencies.get_blob_storage()

    return await analyze_image(
        data,
        upload.filename,
        upload.content_type,
        enrich=dependencies.enrichment_enabled(),
        storage=storage,
    )


@router.get("/api/diseases/{disease_name}/analysis", response_model=DiseaseDetails)
async def disease_analysis(
    disease_name: str,
    confidence: float = Query(0.5, ge=0.0, le=1.0),
):
    """Detailed causes / symptoms / prevention / treatment for a disease name. Never fails."""
    return await get_disease_analysis(disease_name, confidence)
