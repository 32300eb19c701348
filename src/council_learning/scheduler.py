from __future__ import annotations

import random
import sqlite3
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from datetime import datetime, timezone
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from .advisors import AdvisorGateway, AdvisorResponse, DiscussionContext, build_prompt
from .db import DISCUSSIONS, MESSAGES, KnowledgeRepository
from .events import MessageChannel
from .lessons import LessonLog
from .market_data import StaticMarketFeed, HttpMarketFeed
from .models import ROLE_SEQUENCE, AdvisorRole, MarketSnapshot, Message, PerformanceMetric, Topic
from .patterns import PatternStore
from .performance import PerformanceAnalyzer
from .rules import RuleEngine
from .settings import Settings, settings as default_settings
from .state import DiscussionPhase, LearningPhase, RuntimeState
from .topics import pick_weighted, topic_weights
from .trades import TradeLedger


DecisionSink = Callable[[dict], None]


def log_decision(decision: dict) -> None:
    logger.info(
        "Coordinator decision: {} @ {} (confidence={}, risk={})",
        decision.get("action"),
        decision.get("price"),
        decision.get("confidence"),
        decision.get("risk_level"),
    )


class DiscussionScheduler:
    """Runs the periodic advisory discussion and the learning cycle.

    The two cycles are independent APScheduler jobs. They share the
    repository and ``state.agent_states``; discussions only write
    ``last_update``/``confidence``, learning only writes ``learning_progress``.
    """

    def __init__(
        self,
        repository: KnowledgeRepository,
        pattern_store: PatternStore,
        rule_engine: RuleEngine,
        lesson_log: LessonLog,
        analyzer: PerformanceAnalyzer,
        ledger: TradeLedger,
        gateway: AdvisorGateway,
        feed: StaticMarketFeed | HttpMarketFeed,
        channel: MessageChannel | None = None,
        config: Settings | None = None,
        rng: random.Random | None = None,
        decision_sink: DecisionSink | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.repository = repository
        self.pattern_store = pattern_store
        self.rule_engine = rule_engine
        self.lesson_log = lesson_log
        self.analyzer = analyzer
        self.ledger = ledger
        self.gateway = gateway
        self.feed = feed
        self.channel = channel or MessageChannel()
        self.config = config or default_settings
        self.rng = rng or random.Random()
        self.decision_sink = decision_sink or log_decision
        self.clock = clock

        self.state = RuntimeState()
        self.scheduler = BackgroundScheduler(timezone=self.config.timezone)
        self.chat_history: list[Message] = []
        self._history_ids: set[str] = set()
        self._history_lock = threading.Lock()
        self._discussion_lock = threading.Lock()
        self._pool_lock = threading.Lock()
        self._pool: ThreadPoolExecutor | None = None
        self._stopped = False
        self._unsubscribe: Callable[[], None] | None = None

    # ── Lifecycle ─────────────────────────────────────────────────

    def start(self) -> None:
        if self.state.is_running:
            logger.warning("Discussion scheduler already running")
            return

        with self._pool_lock:
            self._stopped = False
        self._restore_history()
        self._unsubscribe = self.channel.subscribe(self._on_message)

        self.scheduler.add_job(
            self._discussion_job,
            trigger=IntervalTrigger(seconds=self.config.discussion_interval_seconds),
            id="discussion_cycle",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self._learning_job,
            trigger=IntervalTrigger(seconds=self.config.learning_interval_seconds),
            id="learning_cycle",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()

        if self.config.run_initial_discussion:
            self.scheduler.add_job(
                self._discussion_job,
                trigger=DateTrigger(run_date=datetime.now(timezone.utc)),
                id="initial_discussion",
                replace_existing=True,
            )

        self.state.is_running = True
        logger.info(
            "Discussion scheduler started. Discussions every {}s, learning every {}s, {} messages restored",
            self.config.discussion_interval_seconds,
            self.config.learning_interval_seconds,
            len(self.chat_history),
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        with self._pool_lock:
            self._stopped = True
            if self._pool is not None:
                self._pool.shutdown(wait=False, cancel_futures=True)
                self._pool = None
        self.state.is_running = False
        logger.info("Discussion scheduler stopped")

    def _discussion_job(self) -> None:
        if not self._discussion_lock.acquire(blocking=False):
            logger.info("Discussion still in progress; skipping this tick")
            return
        try:
            self.run_discussion()
        except Exception as exc:
            logger.exception("Discussion cycle failed: {}", exc)
        finally:
            self._discussion_lock.release()

    def _learning_job(self) -> None:
        try:
            self.run_learning_cycle()
        except Exception as exc:
            logger.exception("Learning cycle failed: {}", exc)

    # ── Transcript history ────────────────────────────────────────

    def _restore_history(self) -> None:
        try:
            records = self.repository.query(
                MESSAGES, order_by="timestamp", direction="desc", limit=self.config.max_chat_history
            )
            completed = self.repository.count(DISCUSSIONS)
        except sqlite3.Error as exc:
            logger.info("Transcript history unavailable (no data yet): {}", exc)
            return

        for message in (Message.from_record(record) for record in reversed(records)):
            self._remember(message)
            try:
                role = AdvisorRole(message.agent)
            except ValueError:
                continue
            agent_state = self.state.agent_states[role]
            agent_state.last_update = message.timestamp
            agent_state.confidence = message.confidence
        self.state.discussion_count = completed

    def _on_message(self, message: Message) -> None:
        self._remember(message)

    def _remember(self, message: Message) -> bool:
        with self._history_lock:
            if message.id in self._history_ids:
                return False
            self.chat_history.append(message)
            self._history_ids.add(message.id)
            while len(self.chat_history) > self.config.max_chat_history:
                dropped = self.chat_history.pop(0)
                self._history_ids.discard(dropped.id)
            return True

    def recent_messages(self, limit: int | None = None) -> list[Message]:
        with self._history_lock:
            if limit is None:
                return list(self.chat_history)
            return list(self.chat_history[-limit:]) if limit > 0 else []

    # ── Discussion cycle ──────────────────────────────────────────

    def select_topic(self, market: MarketSnapshot | None = None) -> Topic:
        self.state.discussion_phase = DiscussionPhase.TOPIC_SELECTION
        snapshot = market or self.feed.snapshot()
        weights = topic_weights(snapshot, self.state.discussion_count + 1)
        return pick_weighted(weights, self.rng)

    def build_context(self, topic: Topic, market: MarketSnapshot) -> DiscussionContext:
        self.state.discussion_phase = DiscussionPhase.CONTEXT_ASSEMBLY
        limit = self.config.context_item_limit
        return DiscussionContext(
            topic=topic,
            timestamp=self.clock(),
            market=market,
            recent_history=self.recent_messages(self.config.recent_history_window),
            patterns=self.pattern_store.similar_to_market(market, limit),
            lessons=self.lesson_log.relevant(market.condition(), limit),
            rules=self.rule_engine.active_rules()[:limit],
            agent_states=self.state.snapshot_agent_states(),
            performance=self.analyzer.summary(self.config.performance_history_limit),
        )

    def run_discussion(self, topic: Topic | None = None) -> list[Message]:
        market = self.feed.snapshot()
        chosen = topic or self.select_topic(market)
        discussion_id = f"discussion_{int(self.clock() * 1000)}_{uuid.uuid4().hex[:6]}"
        self.state.current_topic = chosen.value
        logger.info("Discussion {} started on {} ({})", discussion_id, chosen.value, market.condition())

        transcript: list[Message] = []
        decision: dict | None = None
        try:
            context = self.build_context(chosen, market)
            self.state.discussion_phase = DiscussionPhase.ADVISOR_SEQUENCE
            for role in ROLE_SEQUENCE:
                if not self.gateway.is_enabled(role):
                    logger.debug("Advisor {} disabled; skipping", role.value)
                    continue

                context.team_messages = list(transcript)
                response = self._call_advisor(role, build_prompt(role, context), context)
                if response is None:
                    continue

                message = Message(
                    id=f"msg_{discussion_id}_{role.value}",
                    timestamp=self.clock(),
                    agent=role.value,
                    topic=chosen.value,
                    message=response.message,
                    confidence=response.confidence,
                    data=response.data,
                )
                self._persist_message(message)
                transcript.append(message)

                agent_state = self.state.agent_states[role]
                agent_state.last_update = message.timestamp
                agent_state.confidence = message.confidence

                if role is AdvisorRole.COORDINATOR and response.data.get("decision"):
                    decision = response.data["decision"]
                    self._forward_decision(decision)

            self.state.discussion_phase = DiscussionPhase.PERSISTING
            self.repository.put(
                DISCUSSIONS,
                discussion_id,
                {
                    "id": discussion_id,
                    "timestamp": self.clock(),
                    "topic": chosen.value,
                    "market": market.to_record(),
                    "market_condition": market.condition(),
                    "participants": [msg.agent for msg in transcript],
                    "message_ids": [msg.id for msg in transcript],
                    "pattern_ids": [pattern.id for pattern in context.patterns],
                    "lesson_ids": [lesson.id for lesson in context.lessons],
                    "rule_ids": [rule.id for rule in context.rules],
                    "decision": decision,
                },
            )
        finally:
            self.state.current_topic = None
            self.state.mark_discussion_finish()

        logger.info("Discussion {} finished with {} messages", discussion_id, len(transcript))
        return transcript

    def _executor(self) -> ThreadPoolExecutor:
        with self._pool_lock:
            if self._stopped:
                raise RuntimeError("advisor pool is shut down")
            if self._pool is None:
                self._pool = ThreadPoolExecutor(max_workers=len(ROLE_SEQUENCE), thread_name_prefix="advisor")
            return self._pool

    def _call_advisor(self, role: AdvisorRole, prompt: str, context: DiscussionContext) -> AdvisorResponse | None:
        try:
            future = self._executor().submit(self.gateway.call, role, prompt, context)
        except RuntimeError as exc:
            logger.warning("Advisor {} not called: {}", role.value, exc)
            return None
        try:
            return future.result(timeout=self.config.advisor_timeout_seconds)
        except FuturesTimeout:
            future.cancel()
            logger.warning("Advisor {} timed out after {}s; skipping", role.value, self.config.advisor_timeout_seconds)
        except Exception as exc:
            logger.warning("Advisor {} failed: {}", role.value, exc)
        return None

    def _persist_message(self, message: Message) -> None:
        if not self.repository.insert(MESSAGES, message.id, message.to_record()):
            logger.debug("Message {} already stored", message.id)
            return
        self._remember(message)
        self.channel.publish(message)
        logger.debug("[{}] {}", message.agent, message.message)

    def _forward_decision(self, decision: dict) -> None:
        try:
            self.decision_sink(decision)
        except Exception as exc:
            logger.warning("Decision sink rejected coordinator decision: {}", exc)

    # ── Learning cycle ────────────────────────────────────────────

    def run_learning_cycle(self) -> PerformanceMetric | None:
        self.state.learning_phase = LearningPhase.ANALYZING
        try:
            trades = self.ledger.pending(
                since=self.state.last_learning_cutoff,
                limit=self.config.learning_trade_window,
            )
            if not trades:
                logger.info("Learning cycle: no new trade outcomes")
                return None

            market = self.feed.snapshot()
            condition = market.condition()
            metric = self.analyzer.analyze(trades, market_regime=condition, volatility=market.volatility)

            self.state.learning_phase = LearningPhase.LESSON_EXTRACTION
            self.lesson_log.from_performance(metric)
            for trade in trades:
                if trade.is_win:
                    if not trade.pattern_type:
                        logger.debug("Trade {} has no pattern type; not recording a pattern", trade.id)
                        continue
                    try:
                        self.pattern_store.record(trade.to_pattern_observation(), pattern_id=f"pattern_{trade.id}")
                    except ValueError as exc:
                        logger.warning("Skipping pattern for trade {}: {}", trade.id, exc)
                elif trade.is_loss:
                    self.lesson_log.from_failure(trade, condition)

            self.state.learning_phase = LearningPhase.METRIC_PERSIST
            self.analyzer.record(metric)
            self._adjust_learning_progress(metric.win_rate)
            self.state.last_learning_cutoff = max(trade.timestamp for trade in trades)
            return metric
        finally:
            self.state.mark_learning_finish()

    def _adjust_learning_progress(self, observed_win_rate: float) -> None:
        step = self.config.learning_progress_step
        delta = step if observed_win_rate > 0.5 else -step / 2
        for agent_state in self.state.agent_states.values():
            agent_state.learning_progress = max(0.0, min(1.0, agent_state.learning_progress + delta))
        logger.info("Learning progress adjusted by {:+.3f} (win rate {:.0%})", delta, observed_win_rate)
