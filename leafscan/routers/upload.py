import logging

from fastapi import APIRouter, Query, Request

from leafscan import config, dependencies
from leafscan.models import ErrorResponse, UploadResponse
from leafscan.routers.analyze import read_form_file
from leafscan.services.analysis import read_upload, validate_image_upload

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/api/upload",
    response_model=UploadResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def upload_file(request: Request):
    """Store a leaf photo (multipart field ``file``) and return its key and URL."""
    upload = await read_form_file(request, "file")
    data = await read_upload(upload)
    image = validate_image_upload(upload.filename, upload.content_type, data)

    logger.info(f"Processing file: name={image.filename} type={image.content_type} size={image.size}")
    stored = dependencies.get_blob_storage().upload_image(data, image.filename, image.content_type)
    return UploadResponse(**stored.model_dump())


@router.get("/api/files/signed-url")
async def signed_url(key: str = Query(..., min_length=1)):
    url = dependencies.get_blob_storage().get_signed_url(key, expires_in=config.SIGNED_URL_TTL)
    return {"success": True, "fileKey": key, "signedUrl": url, "expiresIn": config.SIGNED_URL_TTL}


@router.delete("/api/files")
async def delete_file(key: str = Query(..., min_length=1)):
    dependencies.get_blob_storage().delete_object(key)
    return {"success": True, "fileKey": key}
