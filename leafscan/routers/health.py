import logging

from fastapi import APIRouter, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from leafscan import __version__, dependencies
from leafscan.services import disease_analysis
from leafscan.services.rate_limit import get_rate_limit_status

logger = logging.getLogger(__name__)

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)


@router.get("/")
async def root():
    return {
        "status": "online",
        "service": "LeafScan Plant Disease Detection API",
        "version": __version__,
        "features": [
            "Plant.id Identification",
            "Gemini Disease Analysis",
            "Health Scoring",
            "Image Storage"
        ]
    }


@router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": __version__,
        "cache_stats": disease_analysis.analysis_cache.stats(),
        "rate_limit": get_rate_limit_status(),
        "services": {
            "text_model": bool(dependencies.text_client),
            "supabase": bool(dependencies.supabase_client),
            "enrichment": dependencies.enrichment_enabled()
        }
    }


@router.get("/cache/stats")
@limiter.limit("30/minute")
async def cache_stats_endpoint(request: Request):
    return disease_analysis.analysis_cache.stats()


@router.post("/cache/clear")
@limiter.limit("30/minute")
async def clear_cache_endpoint(request: Request):
    disease_analysis.analysis_cache.clear()
    return {"status": "success", "message": "Disease analysis cache cleared"}
