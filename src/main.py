"""
Main Entry Point for the GalaSwap Arbitrage Bot

Scans the configured tokens for liquid directional pairs and quotes each one
through the resilient GalaSwap client. Runs until interrupted, one scan per
interval.
"""

import asyncio
import signal
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

from config.constants import SCAN_INTERVAL_SEC, TOKENS
from config.settings import BotSettings, get_settings
from core.galaswap_client import GalaSwapClient
from core.liquidity_filter import TokenPair
from utils.exceptions import (
    CircuitOpenError,
    ConfigurationError,
    GalaSwapBotError,
    InsufficientLiquidityError,
    PairFilteredError,
)
from utils.helpers import safe_error_message
from utils.logger import get_logger, log_error_with_context, setup_logging


logger = get_logger(__name__)


class GalaSwapBot:
    """
    Bot orchestrator
    Owns the client, runs the scan loop and handles graceful shutdown
    """

    def __init__(self, settings: Optional[BotSettings] = None, client: Optional[GalaSwapClient] = None):
        self.settings = settings or get_settings()
        self.client = client or GalaSwapClient(self.settings)
        self.is_running = False
        self.start_time: Optional[datetime] = None
        self.scans_completed = 0
        self._shutdown_event = asyncio.Event()

    def _signal_handler(self) -> None:
        """Handle shutdown signals gracefully"""
        logger.info("Received shutdown signal, initiating graceful shutdown...")
        self.is_running = False
        self._shutdown_event.set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._signal_handler)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                signal.signal(sig, lambda signum, frame: self._signal_handler())

    def scan_tokens(self) -> List[str]:
        """Token class keys for the configured symbols"""
        unknown = [s for s in self.settings.scan_tokens if s not in TOKENS]
        if unknown:
            raise ConfigurationError(
                f"Unknown scan token symbols: {', '.join(unknown)}",
                error_code='UNKNOWN_TOKEN',
                details={'available': sorted(TOKENS)}
            )
        return [TOKENS[s] for s in self.settings.scan_tokens]

    async def scan_once(self) -> Dict[str, Any]:
        """
        Quote every liquid directional pair once.

        Returns:
            Counts of quoted, filtered, illiquid, circuit-rejected and failed pairs
        """
        pairs: List[TokenPair] = self.client.liquidity_filter.get_liquid_pairs(self.scan_tokens())
        results = {'pairs': len(pairs), 'quoted': 0, 'filtered': 0, 'illiquid': 0, 'circuit_open': 0, 'failed': 0}

        for pair in pairs:
            try:
                quote = await self.client.get_quote(pair.token_in, pair.token_out, self.settings.scan_amount)
                results['quoted'] += 1
                amount_out = (quote.get('data') or {}).get('amountOut')
                logger.info(f"[SCAN] {pair.key}: {self.settings.scan_amount} -> {amount_out}")
            except PairFilteredError:
                results['filtered'] += 1
            except InsufficientLiquidityError:
                results['illiquid'] += 1
                logger.info(f"[SCAN] {pair.key}: insufficient liquidity, blacklisted")
            except CircuitOpenError as e:
                results['circuit_open'] += 1
                logger.warning(f"[SCAN] Quotes suspended: {e.message}")
            except GalaSwapBotError as e:
                results['failed'] += 1
                log_error_with_context(logger, f"[SCAN] Quote failed for {pair.key}", e)

        self.scans_completed += 1
        logger.info(f"[SCAN] Completed scan #{self.scans_completed}: {results}")
        return results

    async def run(self) -> None:
        """Initialize the client and scan until shutdown"""
        if self.is_running:
            logger.warning("Bot is already running")
            return

        self.is_running = True
        self.start_time = datetime.now()

        logger.info("=" * 80)
        logger.info("Starting GalaSwap Arbitrage Bot")
        logger.info(f"Scan tokens: {', '.join(self.settings.scan_tokens)}")
        logger.info(f"Gas bidding: {'ENABLED' if self.settings.gas_bidding_enabled else 'DISABLED'}")
        logger.info("=" * 80)

        await self.client.initialize()
        try:
            health = await self.client.health_check()
            logger.info(f"API status: {health['api_status']}")

            while self.is_running:
                await self.scan_once()
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=SCAN_INTERVAL_SEC)
                except asyncio.TimeoutError:
                    continue
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        logger.info("Shutting down bot...")
        self.is_running = False
        await self.client.close()
        self._log_final_stats()
        logger.info("Bot shutdown complete")

    def _log_final_stats(self) -> None:
        """Log final statistics on shutdown"""
        if not self.start_time:
            return

        runtime = datetime.now() - self.start_time
        stats = self.client.liquidity_filter.get_statistics()

        logger.info("=" * 80)
        logger.info("BOT FINAL STATISTICS")
        logger.info("=" * 80)
        logger.info(f"Runtime: {runtime}")
        logger.info(f"Scans completed: {self.scans_completed}")
        logger.info(f"Pairs filtered: {stats['total_filtered']}")
        logger.info(f"Dynamic blacklist size: {stats['dynamic_blacklist_size']}")
        logger.info("=" * 80)


async def run() -> None:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_file_path, settings.structured_logging)

    bot = GalaSwapBot(settings)
    bot.install_signal_handlers()
    await bot.run()


def main() -> None:
    """Console entry point"""
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except GalaSwapBotError as e:
        logger.error(f"Bot error: {safe_error_message(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
