"""XRP Ledger connection and submission helpers built on xrpl-py."""
from __future__ import annotations

import asyncio
import logging
import re
import threading
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar, Union

from xrpl.asyncio.clients import AsyncWebsocketClient
from xrpl.asyncio.transaction import autofill, submit_and_wait
from xrpl.models.transactions import Payment, Transaction
from xrpl.transaction import XRPLReliableSubmissionException
from xrpl.utils import xrp_to_drops

logger = logging.getLogger(__name__)

TES_SUCCESS = "tesSUCCESS"

_ENGINE_CODE_RE = re.compile(r"\b(te[cfmlrs][A-Z_]+)\b")

T = TypeVar("T")


class NoServerReachable(RuntimeError):
    pass


class EngineFailure(RuntimeError):
    """The ledger rejected the transaction or it did not validate."""

    def __init__(self, message: str, engine_result: Optional[str] = None) -> None:
        super().__init__(message)
        self.engine_result = engine_result


@dataclass(frozen=True)
class SubmissionResult:
    engine_result: Optional[str]
    tx_hash: Optional[str]
    raw: Dict[str, Any]

    @property
    def succeeded(self) -> bool:
        return self.engine_result == TES_SUCCESS


def xrp_amount_to_drops(amount: Union[str, int, float, Decimal, None]) -> str:
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid XRP amount: {amount!r}") from exc
    if not value.is_finite() or value <= 0:
        raise ValueError(f"Invalid XRP amount: {amount!r}")
    return xrp_to_drops(value)


def build_payment(
    *,
    account: str,
    destination: Optional[str],
    amount: Union[str, int, float, Decimal, None],
    destination_tag: Optional[Union[str, int]] = None,
) -> Payment:
    if not isinstance(destination, str) or not destination.strip():
        raise ValueError(f"Missing destination address: {destination!r}")
    fields: Dict[str, Any] = {
        "account": account,
        "amount": xrp_amount_to_drops(amount),
        "destination": destination.strip(),
    }
    if destination_tag is not None:
        try:
            fields["destination_tag"] = int(destination_tag)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid destination tag: {destination_tag!r}") from exc
    return Payment(**fields)


def parse_submission(result: Dict[str, Any]) -> SubmissionResult:
    meta = result.get("meta")
    engine = None
    if isinstance(meta, dict):
        engine = meta.get("TransactionResult")
    if not engine:
        engine = result.get("engine_result")
    tx_json = result.get("tx_json")
    tx_hash = result.get("hash")
    if not tx_hash and isinstance(tx_json, dict):
        tx_hash = tx_json.get("hash")
    return SubmissionResult(engine_result=engine, tx_hash=tx_hash, raw=result)


class LedgerConnector:
    """Holds one live websocket session, falling back across endpoints on connect.

    All ledger I/O runs on a single event loop owned by the connector, on one
    background thread. Worker threads block on the result of each call, so
    concurrent payouts interleave on that loop rather than each opening their
    own. A failed connect leaves nothing behind on the loop.
    """

    def __init__(
        self,
        endpoints: Iterable[str],
        client_factory: Callable[[str], Any] = AsyncWebsocketClient,
    ) -> None:
        self.endpoints: List[str] = [url for url in endpoints if url]
        if not self.endpoints:
            raise ValueError("At least one XRPL endpoint is required")
        self._client_factory = client_factory
        self._client: Optional[Any] = None
        self._url: Optional[str] = None
        self._lock = threading.Lock()
        self._loop_lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[threading.Thread] = None

    @property
    def client(self) -> Optional[Any]:
        return self._client

    @property
    def url(self) -> Optional[str]:
        return self._url

    # -- event loop ------------------------------------------------------

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._loop_lock:
            if self._loop is None or self._loop.is_closed():
                loop = asyncio.new_event_loop()
                thread = threading.Thread(target=loop.run_forever, name="xrpl-loop", daemon=True)
                thread.start()
                self._loop, self._loop_thread = loop, thread
            return self._loop

    def _run(self, coro: Awaitable[T]) -> T:
        loop = self._ensure_loop()
        return asyncio.run_coroutine_threadsafe(coro, loop).result()

    def _stop_loop(self) -> None:
        with self._loop_lock:
            loop, thread = self._loop, self._loop_thread
            self._loop, self._loop_thread = None, None
        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=5)
        loop.close()

    # -- connection ------------------------------------------------------

    def is_connected(self) -> bool:
        client = self._client
        if client is None:
            return False
        try:
            return bool(client.is_open())
        except Exception:  # pragma: no cover - closed socket internals
            return False

    def connect(self) -> None:
        with self._lock:
            self._connect_locked()

    def ensure_connected(self) -> None:
        if self.is_connected():
            return
        with self._lock:
            if self.is_connected():
                return
            self._connect_locked()

    def _connect_locked(self) -> None:
        self._discard_client()
        for url in self.endpoints:
            candidate = self._client_factory(url)
            try:
                self._run(candidate.open())
            except Exception as exc:
                logger.error("XRPL connect failed: %s (%s)", url, exc)
                self._close_client(candidate)
                continue
            self._client = candidate
            self._url = url
            logger.info("XRPL connected: %s", url)
            return
        raise NoServerReachable("No XRPL server reachable")

    def _close_client(self, client: Any) -> None:
        try:
            if client.is_open():
                self._run(client.close())
        except Exception as exc:
            logger.debug("Ignoring error while closing XRPL client: %s", exc)

    def _discard_client(self) -> None:
        client, self._client, self._url = self._client, None, None
        if client is not None:
            self._close_client(client)

    def close(self) -> None:
        with self._lock:
            if self._loop is not None:
                self._discard_client()
            self._client, self._url = None, None
            self._stop_loop()

    # -- submission ------------------------------------------------------

    def _require_client(self) -> Any:
        client = self._client
        if client is None:
            raise NoServerReachable("XRPL client is not connected")
        return client

    def autofill(self, transaction: Transaction) -> Transaction:
        return self._run(autofill(transaction, self._require_client()))

    def submit_and_wait(self, signed: Transaction) -> SubmissionResult:
        client = self._require_client()
        try:
            response = self._run(submit_and_wait(signed, client))
        except XRPLReliableSubmissionException as exc:
            message = str(exc)
            match = _ENGINE_CODE_RE.search(message)
            if match:
                code = match.group(1)
                raise EngineFailure(f"Engine result: {code}", engine_result=code) from exc
            raise EngineFailure(f"Submission failed: {message}") from exc
        result = response.result if isinstance(response.result, dict) else {}
        return parse_submission(result)
