import asyncio
import io
import logging
from typing import Any, Optional

from PIL import Image

from leafscan.config import MAX_UPLOAD_SIZE
from leafscan.errors import InvalidRequestError, LeafScanError
from leafscan.models import AnalysisResult, AnalyzeResponse, ImageDescriptor
from leafscan.services import disease_analysis
from leafscan.services.normalizer import build_plant_info, normalize_identification
from leafscan.services.plant_id import identify_plant
from leafscan.services.storage import BlobStorage

logger = logging.getLogger(__name__)


def file_too_large(size: int, max_size: int) -> InvalidRequestError:
    return InvalidRequestError(
        f"File is too large. Maximum size is {max_size // (1024 * 1024)}MB.",
        code="FILE_TOO_LARGE",
        details={"maxSize": f"{max_size // (1024 * 1024)}MB", "receivedSize": size},
    )


async def read_upload(upload: Any, max_size: Optional[int] = None) -> bytes:
    """
    Read an uploaded file without holding more than max_size + 1 bytes.

    The size reported by the multipart parser is checked first; when it is
    unknown the read is capped and an overflow is rejected the same way.

    Raises:
        InvalidRequestError: FILE_TOO_LARGE
    """
    if max_size is None:
        max_size = MAX_UPLOAD_SIZE

    declared = getattr(upload, "size", None)
    if declared is not None and declared > max_size:
        raise file_too_large(declared, max_size)

    data = await upload.read(max_size + 1)
    if len(data) > max_size:
        raise file_too_large(declared if declared is not None else len(data), max_size)
    return data


def validate_image_upload(
    filename: Optional[str],
    content_type: Optional[str],
    data: bytes,
    max_size: Optional[int] = None,
) -> ImageDescriptor:
    """
    Check an uploaded image and describe it.

    The size limit is enforced before the type check, so an oversized file is
    rejected as FILE_TOO_LARGE even when its MIME type is valid.

    Raises:
        InvalidRequestError: FILE_TOO_LARGE, INVALID_FILE_TYPE or EMPTY_FILE
    """
    if max_size is None:
        max_size = MAX_UPLOAD_SIZE
    size = len(data)
    if size > max_size:
        raise file_too_large(size, max_size)

    content_type = (content_type or "").lower()
    if not content_type.startswith("image/"):
        raise InvalidRequestError(
            "Invalid file type. Please upload an image file.",
            code="INVALID_FILE_TYPE",
            details={"receivedType": content_type},
        )

    if size == 0:
        raise InvalidRequestError("Uploaded file is empty.", code="EMPTY_FILE")

    width = height = None
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
    except Exception as e:
        # Plant.id still gets the bytes; dimensions are informational only
        logger.warning(f"Could not read image dimensions for {filename}: {e}")

    return ImageDescriptor(
        filename=filename or "upload",
        content_type=content_type,
        size=size,
        width=width,
        height=height,
    )


async def enrich_predictions(analysis: AnalysisResult) -> None:
    """Attach cached/generated disease details to every detected disease."""
    if not analysis.diseases:
        return

    results = await asyncio.gather(*[
        disease_analysis.get_disease_analysis(prediction.disease, prediction.confidence)
        for prediction in analysis.predictions
    ])
    for prediction, details in zip(analysis.predictions, results):
        if disease_analysis.is_fallback(details) and prediction.details is not None:
            # Keep the provider's description and treatment over an empty stub
            continue
        prediction.details = details


def store_image(storage: BlobStorage, data: bytes, image: ImageDescriptor) -> Optional[str]:
    try:
        stored = storage.upload_image(data, image.filename, image.content_type)
        return stored.fileUrl
    except LeafScanError as e:
        logger.warning(f"Image storage skipped: {e.message}")
        return None


async def analyze_image(
    data: bytes,
    filename: Optional[str],
    content_type: Optional[str],
    enrich: bool = False,
    storage: Optional[BlobStorage] = None,
) -> AnalyzeResponse:
    """
    Full pipeline for one uploaded leaf photo.

    validate -> identify (Plant.id) -> normalize -> enrich (optional)
    -> store (optional)
    """
    image = validate_image_upload(filename, content_type, data)
    logger.info(f"Starting analysis: {image.filename} ({image.size} bytes, {image.width}x{image.height})")

    raw = await identify_plant(data, image.content_type)
    analysis = normalize_identification(raw, image)
    plant_info = build_plant_info(raw)

    if enrich:
        await enrich_predictions(analysis)

    if storage is not None:
        analysis.imageUrl = store_image(storage, data, image)

    return AnalyzeResponse(
        success=True,
        analysis=analysis,
        plantInfo=plant_info,
        timestamp=analysis.timestamp,
    )
