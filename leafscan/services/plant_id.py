"""
Plant.id identification client.

One attempt per image: a non-2xx answer, a timeout or a transport error is
raised as UpstreamUnavailableError and left to the caller to retry.
"""
import base64
import logging
from typing import Any, Dict, Optional

import httpx

from leafscan.config import API_CONNECT_TIMEOUT, API_TIMEOUT, PLANT_ID_API_KEY, PLANT_ID_URL
from leafscan.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)

PROVIDER = "plant.id"

TIMEOUT = httpx.Timeout(API_TIMEOUT, connect=API_CONNECT_TIMEOUT)

PLANT_DETAILS = ["common_names", "url", "wiki_description", "taxonomy", "synonyms", "edible_parts", "watering"]
DISEASE_DETAILS = ["description", "treatment", "classification", "common_names"]


def build_data_uri(image_bytes: bytes, content_type: Optional[str]) -> str:
    encoded = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{content_type or 'image/jpeg'};base64,{encoded}"


def build_identification_payload(image_bytes: bytes, content_type: Optional[str]) -> Dict[str, Any]:
    return {
        "images": [build_data_uri(image_bytes, content_type)],
        "plant_details": PLANT_DETAILS,
        "disease_details": DISEASE_DETAILS,
    }


async def identify_plant(
    image_bytes: bytes,
    content_type: Optional[str],
    client: Optional[httpx.AsyncClient] = None,
    api_key: Optional[str] = None,
    url: str = PLANT_ID_URL,
) -> Dict[str, Any]:
    """
    Send an image to Plant.id and return the decoded JSON response.

    Args:
        image_bytes: raw image data
        content_type: MIME type of the image (used in the data URI)
        client: optional shared httpx client; a short-lived one is opened otherwise

    Returns:
        The provider payload as a dict (validated later by the normalizer)

    Raises:
        UpstreamUnavailableError: non-2xx status, timeout, connection failure or non-JSON body
    """
    headers = {
        "Api-Key": api_key or PLANT_ID_API_KEY or "",
        "Content-Type": "application/json",
    }
    payload = build_identification_payload(image_bytes, content_type)

    logger.info(f"Calling Plant.id ({len(image_bytes)} bytes, {content_type})")
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=TIMEOUT) as own_client:
                response = await own_client.post(url, headers=headers, json=payload)
        else:
            response = await client.post(url, headers=headers, json=payload)
    except httpx.TimeoutException as e:
        logger.error(f"Plant.id timeout: {e}")
        raise UpstreamUnavailableError("Identification service timed out", provider=PROVIDER)
    except httpx.HTTPError as e:
        logger.error(f"Plant.id connection error: {e}")
        raise UpstreamUnavailableError("Failed to contact identification service", provider=PROVIDER)

    if not response.is_success:
        logger.error(f"Plant.id error response: {response.status_code} - {response.text[:500]}")
        raise UpstreamUnavailableError(
            "Plant identification failed",
            provider=PROVIDER,
            upstream_status=response.status_code,
        )

    try:
        data = response.json()
    except ValueError as e:
        logger.error(f"Plant.id returned non-JSON body: {e}")
        raise UpstreamUnavailableError(
            "Identification service returned an invalid response",
            provider=PROVIDER,
            upstream_status=response.status_code,
        )

    logger.info(f"Plant.id responded with {len(data.get('suggestions') or []) if isinstance(data, dict) else 0} suggestions")
    return data
