"""
Shared provider clients.

Nothing is created at import time; init_services() is called once from the
application lifespan and fills the module globals below.
"""
import logging
from typing import Optional

import httpx
from openai import AsyncOpenAI
from supabase import Client, create_client

from leafscan import config
from leafscan.services import disease_analysis, rate_limit
from leafscan.services.storage import BlobStorage

logger = logging.getLogger(__name__)

text_client: Optional[AsyncOpenAI] = None
supabase_client: Optional[Client] = None
blob_storage = BlobStorage(None)


def build_text_client(api_key: Optional[str] = None) -> Optional[AsyncOpenAI]:
    """OpenRouter client (Gemini) with explicit connect/read timeouts."""
    api_key = api_key or config.OPENROUTER_API_KEY
    if not api_key:
        return None
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=config.API_CONNECT_TIMEOUT,
            read=config.API_TIMEOUT,
            write=config.API_TIMEOUT,
            pool=config.API_TIMEOUT
        )
    )
    client = AsyncOpenAI(
        base_url=config.OPENROUTER_BASE_URL,
        api_key=api_key,
        http_client=http_client,
    )
    logger.info(f"OpenRouter ({config.ANALYSIS_MODEL}) initialized with {config.API_TIMEOUT}s timeout")
    return client


def init_services() -> None:
    global text_client, supabase_client, blob_storage

    text_client = build_text_client()
    if not text_client:
        logger.warning("OPENROUTER_API_KEY not set - disease analysis will return fallback details")
    disease_analysis.configure(text_client, ttl=config.DISEASE_ANALYSIS_TTL)

    supabase_client = None
    if config.SUPABASE_URL and config.SUPABASE_KEY:
        try:
            supabase_client = create_client(config.SUPABASE_URL, config.SUPABASE_KEY)
            logger.info("Supabase initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize Supabase: {e}")
    blob_storage = BlobStorage(supabase_client, bucket=config.STORAGE_BUCKET)

    rate_limit.init_redis()


async def close_services() -> None:
    if text_client is not None:
        await text_client.close()


def get_blob_storage() -> BlobStorage:
    return blob_storage


def enrichment_enabled() -> bool:
    return config.ENRICH_ANALYSIS and text_client is not None
