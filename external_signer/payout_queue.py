"""Reads queued payout requests from the Supabase REST API."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class FetchError(RuntimeError):
    """Raised when the backend refuses or fails a queue read."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PayoutRequest(BaseModel):
    """A queued backend row. ``wallet_address`` is the payment destination.

    Only ``id`` is required here; a row with an unusable destination or amount
    still has to reach the processor so it can be reported as failed.
    """

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str = Field(min_length=1)
    wallet_address: Optional[str] = None
    amount: Optional[str] = None
    destination_tag: Optional[Union[int, str]] = None
    webhook_secret: Optional[str] = None

    @field_validator("wallet_address", "amount")
    @classmethod
    def strip_value(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return value.strip()

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Optional["PayoutRequest"]:
        """Parse a backend row; rows that do not validate keep their raw values."""
        raw_id = row.get("id")
        if raw_id is None or str(raw_id).strip() == "":
            return None
        try:
            return cls.model_validate(row)
        except ValidationError as exc:
            logger.warning("Payout row %s has unexpected fields: %s", raw_id, exc)
        fields = {name: row.get(name) for name in cls.model_fields if name != "id"}
        return cls.model_construct(id=str(raw_id), **fields)


def supabase_headers(service_role_key: str) -> Dict[str, str]:
    return {
        "apikey": service_role_key,
        "Authorization": f"Bearer {service_role_key}",
        "Content-Type": "application/json",
    }


class PayoutQueue:
    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        *,
        chain: str = "XRP",
        table: str = "payout_requests",
        order_column: str = "requested_at",
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_role_key = service_role_key
        self.chain = chain
        self.table = table
        self.order_column = order_column
        self.timeout = timeout
        self._http = session or requests.Session()

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/rest/v1/{self.table}"

    def query_params(self, limit: int) -> Dict[str, str]:
        return {
            "status": "eq.queued",
            "chain": f"eq.{self.chain}",
            "order": f"{self.order_column}.asc",
            "limit": str(int(limit)),
        }

    def fetch_queued(self, limit: int = 5) -> List[PayoutRequest]:
        """Return up to ``limit`` queued rows for this chain, oldest first."""
        try:
            response = self._http.get(
                self.endpoint,
                params=self.query_params(limit),
                headers=supabase_headers(self.service_role_key),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise FetchError(f"Fetch queued failed: {exc}") from exc

        if not response.ok:
            body = response.text
            raise FetchError(
                f"Fetch queued failed: {response.status_code} {body}",
                status_code=response.status_code,
                body=body,
            )

        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise FetchError("Fetch queued returned invalid JSON", status_code=response.status_code) from exc
        if not isinstance(payload, list):
            raise FetchError("Fetch queued returned a non-list payload", status_code=response.status_code)

        rows: List[PayoutRequest] = []
        for item in payload:
            if not isinstance(item, dict):
                logger.warning("Skipping malformed payout row: %r", item)
                continue
            row = PayoutRequest.from_row(item)
            if row is None:
                logger.error("Skipping payout row without id: %r", item)
                continue
            rows.append(row)
        return rows
