from __future__ import annotations

import json
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import FileResponse, JSONResponse, Response

from ..billing.events import verify_webhook_payload
from ..engine import ReconciliationEngine
from ..errors import CommunityUnavailable, SignatureVerificationFailed


logger = logging.getLogger("paid_role_bot.web")

SIGNATURE_HEADER = "Stripe-Signature"


def create_webhook_app(
    engine: ReconciliationEngine,
    *,
    webhook_secret: str,
    signature_tolerance_seconds: int = 300,
) -> FastAPI:
    app = FastAPI(title="Paid Role Bot", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/health")
    async def health() -> JSONResponse:
        snapshot = await engine.health()
        body = snapshot.as_dict()
        logger.info("Health check: %s", json.dumps(body))
        code = status.HTTP_200_OK if snapshot.healthy else status.HTTP_500_INTERNAL_SERVER_ERROR
        return JSONResponse(body, status_code=code)

    @app.get("/backup")
    async def backup() -> Response:
        path = engine.identities.cache_path
        if not path.is_file():
            return JSONResponse({"error": "snapshot not written yet"}, status_code=status.HTTP_404_NOT_FOUND)
        return FileResponse(path, media_type="application/json", filename="verified_users.json")

    @app.post("/webhook")
    async def webhook(request: Request) -> Response:
        payload = await request.body()
        logger.info("Webhook received at /webhook - body length: %s", len(payload))

        signature = request.headers.get(SIGNATURE_HEADER)
        if not signature:
            logger.error("No %s header value was provided", SIGNATURE_HEADER)
            return Response(status_code=status.HTTP_400_BAD_REQUEST)
        if not webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET is not configured")
            return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

        try:
            raw_event = verify_webhook_payload(
                payload,
                signature,
                webhook_secret,
                tolerance=signature_tolerance_seconds,
            )
        except SignatureVerificationFailed as exc:
            logger.error("Webhook signature verification failed: %s", exc)
            return Response(status_code=status.HTTP_400_BAD_REQUEST)
        except ValueError as exc:
            logger.error("Webhook body is not a valid event: %s", exc)
            return Response(status_code=status.HTTP_400_BAD_REQUEST)

        event_type = str(raw_event.get("type") or "")
        logger.info("Webhook event: %s (%s)", event_type, raw_event.get("id") or "-")
        try:
            event = await engine.normalizer.normalize(raw_event)
            if event is None:
                logger.info("Unhandled event type: %s", event_type)
                return JSONResponse({"received": True, "action": "ignored"})
            action = await engine.handle_payment_event(event)
        except CommunityUnavailable as exc:
            logger.warning("Deferring %s until Discord is ready: %s", event_type, exc)
            return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
        except Exception:
            logger.exception("Webhook error while handling %s", event_type)
            return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

        return JSONResponse({"received": True, "action": action})

    return app
