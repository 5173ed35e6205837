"""CLI entrypoint for the external signer."""
from __future__ import annotations

import logging
import signal
import sys
import threading

from .api import create_app, run_api
from .config import ConfigMissing, settings
from .processor import PayoutProcessor
from .signer import SignerError

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s:%(lineno)d | %(message)s",
        stream=sys.stdout,
    )


def install_signal_handlers(processor: PayoutProcessor) -> None:
    """Stop the poll loop on SIGTERM; ``run_forever`` then drains the pool."""

    def _on_sigterm(signum, frame) -> None:
        logger.info("Received signal %s, stopping payout loop", signum)
        processor.stop()

    signal.signal(signal.SIGTERM, _on_sigterm)


def main() -> None:
    configure_logging()

    logger.info("Starting external signer")

    processor = PayoutProcessor(settings)
    try:
        wallet = processor.ensure_wallet()
        logger.info("Boot hot wallet: %s", wallet.address)
    except (ConfigMissing, SignerError) as exc:
        # Keep serving so /health can report the problem.
        logger.error("Boot configuration error: %s", exc)

    app = create_app(processor, settings)
    api_thread = threading.Thread(
        target=run_api,
        name="signer-api",
        args=(app, settings),
        daemon=True,
    )
    api_thread.start()
    logger.info("HTTP API available at http://%s:%s", settings.api_host, settings.port)

    install_signal_handlers(processor)
    processor.run_forever()


if __name__ == "__main__":
    main()
