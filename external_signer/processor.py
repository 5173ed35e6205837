"""Payout loop that pays queued XRP requests and reports their status."""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Dict, Optional, Set

from .config import ConfigMissing, SignerSettings
from .payout_queue import FetchError, PayoutQueue, PayoutRequest
from .signer import HotWallet, SignerError
from .webhooks import (
    WebhookError,
    WebhookReporter,
    completed_payload,
    failed_payload,
    processing_payload,
)
from .xrpl_client import EngineFailure, LedgerConnector, NoServerReachable, build_payment

logger = logging.getLogger(__name__)


class PayoutProcessor:
    """Owns the hot wallet, ledger connection and payout slots for one process.

    At most ``settings.max_concurrent`` payouts are in flight at any time. A slot
    is taken before a row is handed to the worker pool and released once the
    terminal webhook has been attempted.
    """

    def __init__(
        self,
        settings: SignerSettings,
        *,
        connector: Optional[LedgerConnector] = None,
        queue: Optional[PayoutQueue] = None,
        reporter: Optional[WebhookReporter] = None,
        wallet: Optional[HotWallet] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self.settings = settings
        self.max_concurrent = int(settings.max_concurrent)
        self.connector = connector or LedgerConnector(settings.ledger_endpoints)
        self._queue = queue
        self._reporter = reporter
        self._wallet = wallet
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.max_concurrent,
            thread_name_prefix="payout",
        )

        self._slots = threading.BoundedSemaphore(self.max_concurrent)
        self._lock = threading.Lock()
        self._inflight_ids: Set[str] = set()
        self._stop = threading.Event()

    # -- service context -------------------------------------------------

    @property
    def inflight(self) -> int:
        with self._lock:
            return len(self._inflight_ids)

    @property
    def available_slots(self) -> int:
        return max(self.max_concurrent - self.inflight, 0)

    def ensure_wallet(self) -> HotWallet:
        if self._wallet is None:
            self.settings.ensure_required()
            self._wallet = HotWallet.from_seed(str(self.settings.xrp_hot_wallet_seed))
            logger.info("Hot wallet loaded: %s", self._wallet.address)
        return self._wallet

    @property
    def queue(self) -> PayoutQueue:
        if self._queue is None:
            self.settings.ensure_required()
            self._queue = PayoutQueue(
                str(self.settings.supabase_url),
                str(self.settings.supabase_service_role_key),
                chain=self.settings.payout_chain,
                table=self.settings.payout_table,
                order_column=self.settings.payout_order_column,
                timeout=self.settings.http_timeout_seconds,
            )
        return self._queue

    @property
    def reporter(self) -> WebhookReporter:
        if self._reporter is None:
            self.settings.ensure_required()
            self._reporter = WebhookReporter(
                str(self.settings.supabase_webhook_url),
                timeout=self.settings.http_timeout_seconds,
            )
        return self._reporter

    def health(self) -> Dict[str, Any]:
        """Snapshot for ``/health``; raises ConfigMissing/SignerError on bad configuration."""
        wallet = self.ensure_wallet()
        if not self.connector.is_connected():
            try:
                self.connector.ensure_connected()
            except NoServerReachable as exc:
                logger.warning("Health check could not reach XRPL: %s", exc)
        return {
            "ok": True,
            "xrpl_connected": self.connector.is_connected(),
            "hot_wallet": wallet.address,
            "inflight": self.inflight,
        }

    # -- single payout ---------------------------------------------------

    def process_one(self, row: PayoutRequest) -> bool:
        """Pay one request end to end. Returns True when it completed on ledger."""
        request_id = row.id
        try:
            self.reporter.post_webhook(processing_payload(request_id, row.webhook_secret))

            wallet = self.ensure_wallet()
            payment = build_payment(
                account=wallet.address,
                destination=row.wallet_address,
                amount=row.amount,
                destination_tag=row.destination_tag,
            )
            prepared = self.connector.autofill(payment)
            signed = wallet.sign(prepared)
            result = self.connector.submit_and_wait(signed)
            if not result.succeeded:
                raise EngineFailure(
                    f"Engine result: {result.engine_result or 'unknown'}",
                    engine_result=result.engine_result,
                )
        except Exception as exc:
            logger.error("Payout %s failed: %s", request_id, exc)
            self._report_quietly(failed_payload(request_id, exc, row.webhook_secret))
            return False

        self._report_quietly(completed_payload(request_id, result.tx_hash, row.webhook_secret))
        logger.info("Payout %s completed (tx=%s)", request_id, result.tx_hash)
        return True

    def _report_quietly(self, payload: Dict[str, Any]) -> None:
        try:
            self.reporter.post_webhook(payload)
        except (WebhookError, ConfigMissing) as exc:
            logger.error(
                "Webhook error reporting %s for %s: %s",
                payload.get("status"),
                payload.get("request_id"),
                exc,
            )

    # -- dispatch --------------------------------------------------------

    def dispatch(self, row: PayoutRequest) -> bool:
        """Hand a row to the worker pool if a slot is free and it is not already in flight."""
        with self._lock:
            if row.id in self._inflight_ids:
                logger.debug("Payout %s already in flight; skipping", row.id)
                return False
            if not self._slots.acquire(blocking=False):
                return False
            self._inflight_ids.add(row.id)

        try:
            self._executor.submit(self._run_claimed, row)
        except RuntimeError:
            self._release(row.id)
            raise
        return True

    def _run_claimed(self, row: PayoutRequest) -> None:
        try:
            self.process_one(row)
        except Exception as exc:  # pragma: no cover - process_one contains its own failures
            logger.exception("Unexpected error while processing payout %s: %s", row.id, exc)
        finally:
            self._release(row.id)

    def _release(self, request_id: str) -> None:
        with self._lock:
            if request_id in self._inflight_ids:
                self._inflight_ids.discard(request_id)
                self._slots.release()

    # -- polling ---------------------------------------------------------

    def poll_once(self) -> int:
        """Run one poll cycle; returns how many rows were dispatched."""
        try:
            self.ensure_wallet()
        except (ConfigMissing, SignerError) as exc:
            logger.error("Skipping poll cycle: %s", exc)
            return 0

        try:
            self.connector.ensure_connected()
        except NoServerReachable as exc:
            logger.error("XRPL reconnect failed: %s", exc)
            return 0

        if self.available_slots <= 0:
            logger.debug("All %s payout slots busy; skipping poll", self.max_concurrent)
            return 0

        try:
            rows = self.queue.fetch_queued(self.max_concurrent)
        except FetchError as exc:
            logger.error("Poll error: %s", exc)
            return 0

        dispatched = 0
        for row in rows:
            if self.available_slots <= 0:
                break
            if self.dispatch(row):
                dispatched += 1
        if dispatched:
            logger.info("Dispatched %s payout(s); in flight=%s", dispatched, self.inflight)
        return dispatched

    def run_forever(self) -> None:
        """Blocking loop that polls every configured interval until ``stop`` is called."""
        interval = self.settings.poll_interval_seconds
        logger.info("Starting payout loop with interval %s seconds", interval)
        try:
            while not self._stop.is_set():
                start = time.time()
                try:
                    self.poll_once()
                except Exception as exc:  # pragma: no cover - defensive logging
                    logger.exception("Unexpected error in poll cycle: %s", exc)
                elapsed = time.time() - start
                self._stop.wait(max(interval - elapsed, 0))
        except KeyboardInterrupt:
            logger.info("Payout loop stopped via keyboard interrupt")
        finally:
            self.shutdown()

    def stop(self) -> None:
        self._stop.set()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
        self.connector.close()
