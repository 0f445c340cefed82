"""Serverless entrypoint. Reports import/startup failures as a JSON 500 instead of a bare crash."""
import json
import logging
import os
import sys

logger = logging.getLogger(__name__)

startup_error = None

try:
    from leafscan.main import app
except Exception as e:
    import traceback
    logger.error(f"Failed to import leafscan.main: {e}", exc_info=True)

    # Internals are only exposed outside production
    details = "Internal server error"
    if os.getenv("ENVIRONMENT", "development").lower() != "production":
        details = {
            "error": str(e),
            "type": type(e).__name__,
            "traceback": traceback.format_exc(),
            "python_version": sys.version
        }

    startup_error = {
        "success": False,
        "error": {
            "message": "Service failed to start",
            "code": "STARTUP_ERROR",
            "details": details
        }
    }

    # Minimal ASGI app that answers every request with the startup error
    async def app(scope, receive, send):
        if scope["type"] != "http":
            return
        body = json.dumps(startup_error, ensure_ascii=False).encode("utf-8")
        await send({
            "type": "http.response.start",
            "status": 500,
            "headers": [
                [b"content-type", b"application/json; charset=utf-8"],
            ],
        })
        await send({
            "type": "http.response.body",
            "body": body,
        })
