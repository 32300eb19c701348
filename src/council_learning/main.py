from __future__ import annotations

import argparse
import time

from loguru import logger

from .advisors import build_gateway
from .alerts import WebhookRelay
from .db import KnowledgeRepository
from .events import MessageChannel
from .lessons import LessonLog
from .logging_config import configure_logging
from .market_data import build_market_feed
from .patterns import PatternStore
from .performance import PerformanceAnalyzer
from .rules import RuleEngine
from .scheduler import DiscussionScheduler
from .settings import Settings, settings
from .trades import TradeLedger


def build_scheduler(config: Settings | None = None, channel: MessageChannel | None = None) -> DiscussionScheduler:
    cfg = config or settings
    repository = KnowledgeRepository(cfg.db_path)
    rule_engine = RuleEngine(repository, cfg)
    channel = channel or MessageChannel()
    if cfg.alert_webhook_url.strip():
        channel.subscribe(WebhookRelay(cfg))

    return DiscussionScheduler(
        repository=repository,
        pattern_store=PatternStore(repository, rule_engine, cfg),
        rule_engine=rule_engine,
        lesson_log=LessonLog(repository, rule_engine, cfg),
        analyzer=PerformanceAnalyzer(repository, cfg),
        ledger=TradeLedger(repository),
        gateway=build_gateway(cfg),
        feed=build_market_feed(cfg),
        channel=channel,
        config=cfg,
    )


def run_service(once: bool = False) -> None:
    configure_logging(settings.log_level, settings.log_file)
    scheduler = build_scheduler(settings)
    scheduler.repository.initialize()

    if once:
        scheduler.run_discussion()
        scheduler.run_learning_cycle()
        scheduler.stop()
        return

    scheduler.start()
    logger.info("Advisory council running (mock_mode={})", settings.mock_mode)
    logger.info("Press Ctrl+C to stop")

    try:
        while True:
            time.sleep(settings.service_heartbeat_seconds)
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
        scheduler.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Advisory council knowledge base and discussion scheduler")
    parser.add_argument("--once", action="store_true", help="Run one discussion and one learning cycle, then exit")
    args = parser.parse_args()
    run_service(once=args.once)


if __name__ == "__main__":
    main()
