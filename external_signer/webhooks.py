"""Status callbacks for payout requests."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

MAX_ERROR_MESSAGE_LENGTH = 500


class WebhookError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def processing_payload(request_id: str, webhook_secret: Optional[str]) -> Dict[str, Any]:
    return {
        "request_id": request_id,
        "status": STATUS_PROCESSING,
        "webhook_secret": webhook_secret,
    }


def completed_payload(request_id: str, tx_id: Optional[str], webhook_secret: Optional[str]) -> Dict[str, Any]:
    return {
        "request_id": request_id,
        "status": STATUS_COMPLETED,
        "tx_id": tx_id,
        "webhook_secret": webhook_secret,
    }


def failed_payload(request_id: str, error: Any, webhook_secret: Optional[str]) -> Dict[str, Any]:
    return {
        "request_id": request_id,
        "status": STATUS_FAILED,
        "error_message": str(error)[:MAX_ERROR_MESSAGE_LENGTH],
        "webhook_secret": webhook_secret,
    }


class WebhookReporter:
    def __init__(
        self,
        url: str,
        *,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._http = session or requests.Session()

    def post_webhook(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self._http.post(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise WebhookError(f"Webhook failed: {exc}") from exc

        if not response.ok:
            body = response.text
            raise WebhookError(
                f"Webhook failed: {response.status_code} {body}",
                status_code=response.status_code,
                body=body,
            )
        try:
            return response.json()
        except ValueError:
            return {"ok": True}
