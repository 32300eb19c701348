"""Advisory roles behind a single gateway.

Four roles speak in a fixed order during each discussion:

  sentiment  crowd mood, funding and fear/greed. Rate limited.
  market     technical read of price, RSI and volume.
  macro      liquidity, dollar strength, central-bank backdrop.
  rl80       the lead trader. Runs locally, reads the team's messages and
             may attach a trading decision.

Each role is bound to one handler when the gateway is built; call sites
only see ``AdvisorGateway``.
"""

from __future__ import annotations

import json
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

from loguru import logger

from .models import AdvisorRole, Lesson, MarketSnapshot, Message, Pattern, Rule, Topic
from .ollama_client import InferenceResult, OllamaClient
from .openai_client import OpenAIClient
from .settings import Settings, settings as default_settings


# ── Data classes ──────────────────────────────────────────────────

@dataclass
class AdvisorResponse:
    message: str
    confidence: float = 0.5
    data: dict = field(default_factory=dict)


@dataclass
class DiscussionContext:
    topic: Topic
    timestamp: float
    market: MarketSnapshot
    recent_history: list[Message] = field(default_factory=list)
    patterns: list[Pattern] = field(default_factory=list)
    lessons: list[Lesson] = field(default_factory=list)
    rules: list[Rule] = field(default_factory=list)
    agent_states: dict[str, dict] = field(default_factory=dict)
    team_messages: list[Message] = field(default_factory=list)
    performance: dict = field(default_factory=dict)


class ChatClient(Protocol):
    provider: str

    def chat(self, system: str, prompt: str, max_tokens: int | None = None) -> InferenceResult: ...


# ── Prompts ───────────────────────────────────────────────────────

ROLE_PERSONAS: dict[AdvisorRole, str] = {
    AdvisorRole.SENTIMENT: (
        "You are the Sentiment Oracle on a crypto trading desk. You read crowd psychology, "
        "funding, and fear/greed, not charts. Keep it to 1-2 punchy sentences."
    ),
    AdvisorRole.MARKET: (
        "You are the Market Analyst on a crypto trading desk. You read price action, RSI, "
        "volume and key levels. Keep it to 1-2 precise sentences."
    ),
    AdvisorRole.MACRO: (
        "You are the Macro Specialist on a crypto trading desk. You read liquidity, the dollar, "
        "rates and central banks. Keep it to 1-2 measured sentences."
    ),
    AdvisorRole.COORDINATOR: (
        "You are RL80, the lead trader. Synthesize the team and state a disciplined action."
    ),
}

ROLE_INSTRUCTIONS: dict[AdvisorRole, str] = {
    AdvisorRole.SENTIMENT: "Analyze crowd sentiment and social signals for this {topic} discussion.",
    AdvisorRole.MARKET: "Provide technical analysis perspective on {topic}.",
    AdvisorRole.MACRO: "Share macro economic insights relevant to {topic}.",
    AdvisorRole.COORDINATOR: "Synthesize team insights and provide a trading decision for {topic}.",
}

RESPONSE_FORMAT = (
    'Return ONLY strict JSON: {"message": "1-2 sentences", "confidence": 0.0-1.0, "data": {}}'
)


def build_prompt(role: AdvisorRole, context: DiscussionContext) -> str:
    market = context.market
    lines = [
        f"Current topic: {context.topic.value}",
        "",
        "Market Data:",
        f"- BTC Price: ${market.btc_price:,.0f}",
        f"- RSI: {market.rsi:.1f}",
        f"- Volume: {market.volume:,.0f}",
        f"- Volatility: {market.volatility:.1f}",
        f"- Condition: {market.condition()}",
    ]
    if market.fear_greed is not None:
        lines.append(f"- Fear & Greed: {market.fear_greed:.0f}")
    if market.funding_rate is not None:
        lines.append(f"- Funding: {market.funding_rate * 100:.3f}%")

    if context.team_messages:
        lines += ["", "Team Discussion So Far:"]
        lines += [f"{msg.agent}: {msg.message[:200]}" for msg in context.team_messages]
    elif context.recent_history:
        lines += ["", "Recent team chat:"]
        lines += [f"{msg.agent}: {msg.message[:120]}" for msg in context.recent_history[-5:]]

    if context.lessons:
        lines += ["", "Relevant Lessons Learned:"]
        lines += [f"- {lesson.actionable_insight or lesson.title}" for lesson in context.lessons]
    if context.rules:
        lines += ["", "Active Trading Rules:"]
        lines += [f"- IF {rule.condition} THEN {rule.action} ({rule.confidence:.0%})" for rule in context.rules]
    if context.patterns:
        lines += ["", "Similar Historical Patterns:"]
        lines += [
            f"- {p.type}/{p.setup or 'n/a'} -> {p.outcome} (pnl {p.pnl:+.2f}, confidence {p.confidence:.0%})"
            for p in context.patterns
        ]
    if context.performance:
        perf = context.performance
        lines += [
            "",
            "Recent Performance:",
            f"- Avg win rate: {perf['avg_win_rate']:.0%} over {perf['trades']} trades",
            f"- Best regime: {perf['best_regime']}, worst regime: {perf['worst_regime']}",
        ]
        own_accuracy = perf.get("agent_accuracy", {}).get(role.value)
        if own_accuracy is not None:
            lines.append(f"- Your call accuracy: {own_accuracy:.0%}")

    lines += ["", ROLE_INSTRUCTIONS[role].format(topic=context.topic.value), RESPONSE_FORMAT]
    return "\n".join(lines)


def parse_advisor_payload(text: str) -> dict | None:
    """Pull the JSON object out of a model reply; None when there isn't a usable one."""
    if not text:
        return None
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        start = text.find("{")
        end = text.rfind("}") + 1
        if start < 0 or end <= start:
            return None
        try:
            payload = json.loads(text[start:end])
        except json.JSONDecodeError:
            return None
    if not isinstance(payload, dict) or not str(payload.get("message") or "").strip():
        return None
    return payload


def _clamp_confidence(value, default: float = 0.5) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return default


# ── Deterministic fallbacks ───────────────────────────────────────

def heuristic_summary(role: AdvisorRole, market: MarketSnapshot) -> str:
    """Plain-data read of the snapshot used when a provider reply is unusable."""
    if role is AdvisorRole.SENTIMENT:
        fear_greed = market.fear_greed if market.fear_greed is not None else 50
        if fear_greed < 25:
            mood = "Capitulation vibes, maximum pessimism"
        elif fear_greed < 40:
            mood = "Risk-off mode spreading, FUD taking over"
        elif fear_greed > 75:
            mood = "Euphoria building, crowd chasing"
        elif fear_greed > 60:
            mood = "FOMO building, risk-on mode"
        else:
            mood = "Crowd undecided, waiting for a catalyst"
        return f"{mood} (fear/greed {fear_greed:.0f})."
    if role is AdvisorRole.MARKET:
        if market.rsi > 70:
            read = "overbought, watch for rejection at resistance"
        elif market.rsi < 30:
            read = "oversold, bounce setups in play"
        else:
            read = "neutral zone, range conditions"
        return f"BTC ${market.btc_price:,.0f} with RSI {market.rsi:.0f}: {read}."
    if role is AdvisorRole.MACRO:
        if market.volatility > 40:
            return "Volatility elevated; macro backdrop favors reduced risk until liquidity settles."
        return "Macro conditions neutral for risk; liquidity steady."
    return "Monitoring setup."


MOCK_RESPONSES: dict[AdvisorRole, dict[Topic, str]] = {
    AdvisorRole.SENTIMENT: {
        Topic.MARKET_ANALYSIS: "Crowd sentiment is cautiously optimistic. Seeing moderate FOMO building.",
        Topic.RISK_ASSESSMENT: "Fear index showing neutral levels. No extreme greed or panic.",
        Topic.ENTRY_OPPORTUNITIES: "Social chatter picking up on dip buying opportunities.",
        Topic.EXIT_STRATEGIES: "Sentiment getting frothy, might be time to take some profits.",
        Topic.MACRO_OUTLOOK: "Crowd focusing on Fed pivot narrative.",
        Topic.SENTIMENT_CHECK: "Overall vibe: neutral with slight bullish tilt.",
        Topic.PERFORMANCE_REVIEW: "My sentiment calls have been on point lately!",
    },
    AdvisorRole.MARKET: {
        Topic.MARKET_ANALYSIS: "BTC holding above 95k support. RSI at 55, neutral zone.",
        Topic.RISK_ASSESSMENT: "Technical indicators mixed. Volatility within normal range.",
        Topic.ENTRY_OPPORTUNITIES: "Watching for bounce off 94k support level.",
        Topic.EXIT_STRATEGIES: "Resistance at 98k. Consider scaling out there.",
        Topic.MACRO_OUTLOOK: "Charts showing consolidation pattern.",
        Topic.SENTIMENT_CHECK: "Price action suggests accumulation phase.",
        Topic.PERFORMANCE_REVIEW: "Technical levels holding as predicted.",
    },
    AdvisorRole.MACRO: {
        Topic.MARKET_ANALYSIS: "DXY stable at 104. Macro conditions neutral for risk.",
        Topic.RISK_ASSESSMENT: "No major central bank events this week.",
        Topic.ENTRY_OPPORTUNITIES: "Liquidity conditions supportive for risk-on.",
        Topic.EXIT_STRATEGIES: "Watch for DXY breakout above 105.",
        Topic.MACRO_OUTLOOK: "Fed likely to hold rates steady.",
        Topic.SENTIMENT_CHECK: "Global liquidity remains ample.",
        Topic.PERFORMANCE_REVIEW: "Macro calls aligned with market moves.",
    },
}

MOCK_CONFIDENCE = 0.65


# ── Rate limiting ─────────────────────────────────────────────────

class RateLimiter:
    """Allows one call per ``window_seconds``; rejected calls do not reset the window."""

    def __init__(self, window_seconds: float, clock: Callable[[], float] = time.time) -> None:
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self.last_call_timestamp: float | None = None

    def try_acquire(self) -> bool:
        with self._lock:
            now = self._clock()
            if self.last_call_timestamp is not None and now - self.last_call_timestamp < self.window_seconds:
                return False
            self.last_call_timestamp = now
            return True


# ── Role handlers ─────────────────────────────────────────────────

class LiveAdvisor:
    kind = "live"

    def __init__(self, role: AdvisorRole, client: ChatClient, rate_limiter: RateLimiter | None = None) -> None:
        self.role = role
        self.client = client
        self.rate_limiter = rate_limiter

    def respond(self, prompt: str, context: DiscussionContext) -> AdvisorResponse | None:
        if self.rate_limiter is not None and not self.rate_limiter.try_acquire():
            logger.info("{} advisor rate limited; skipping this round", self.role.value)
            return None

        result = self.client.chat(ROLE_PERSONAS[self.role], prompt)
        payload = parse_advisor_payload(result.text)
        if payload is None:
            logger.info("{} advisor returned unusable output; using heuristic summary", self.role.value)
            return AdvisorResponse(
                message=heuristic_summary(self.role, context.market),
                confidence=0.4,
                data={"fallback": "heuristic", "model": result.model_used},
            )

        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        data.setdefault("model", result.model_used)
        return AdvisorResponse(
            message=str(payload["message"]).strip(),
            confidence=_clamp_confidence(payload.get("confidence")),
            data=data,
        )


class MockAdvisor:
    kind = "mock"

    def __init__(self, role: AdvisorRole) -> None:
        self.role = role

    def respond(self, prompt: str, context: DiscussionContext) -> AdvisorResponse:
        text = MOCK_RESPONSES.get(self.role, {}).get(context.topic)
        if text is None:
            text = f"{self.role.value} analyzing {context.topic.value}..."
        return AdvisorResponse(message=f"[MOCK] {text}", confidence=MOCK_CONFIDENCE, data={"mock": True})


BULLISH_WORDS = re.compile(r"bull|buy|long|support|accumul|oversold|bounce|breakout|risk-on|supportive")
BEARISH_WORDS = re.compile(r"bear|sell|short|resistance|distribut|overbought|reject|breakdown|risk-off|frothy")


def analyze_team_consensus(messages: list[Message]) -> str:
    votes = {"bullish": 0, "bearish": 0, "neutral": 0}
    for msg in messages[-3:]:
        text = (msg.message or "").lower()
        if BULLISH_WORDS.search(text):
            votes["bullish"] += 1
        elif BEARISH_WORDS.search(text):
            votes["bearish"] += 1
        else:
            votes["neutral"] += 1

    if votes["bullish"] > votes["bearish"] and votes["bullish"] > votes["neutral"]:
        return "bullish"
    if votes["bearish"] > votes["bullish"] and votes["bearish"] > votes["neutral"]:
        return "bearish"
    return "neutral"


COORDINATOR_LINES = {
    "bullish": [
        "Team aligned bullish. Deploying capital with 2% stop.",
        "Green lights across the board. Building position.",
        "Consensus bullish. Executing long with defined risk.",
    ],
    "bearish": [
        "Team bearish. Reducing exposure, considering shorts.",
        "Defensive mode activated. Taking risk off.",
        "Consensus negative. Moving to cash, eyeing short setups.",
    ],
    "mixed": [
        "Mixed signals. Staying flat until clarity emerges.",
        "Team divided. Reducing position size for safety.",
        "No clear edge. Waiting for better setup.",
    ],
}


class CoordinatorAdvisor:
    """Local lead-trader synthesis; no external provider, so it always runs."""

    kind = "coordinator"

    def respond(self, prompt: str, context: DiscussionContext) -> AdvisorResponse | None:
        market = context.market
        if not market.btc_price:
            return None

        consensus = analyze_team_consensus(context.team_messages)
        risk_level = "normal"
        if market.volatility > 40:
            risk_level = "high"
        elif market.funding_rate is not None and abs(market.funding_rate) > 0.05:
            risk_level = "elevated"

        action = "hold"
        fear_greed = market.fear_greed
        if fear_greed is not None and fear_greed < 25 and consensus != "bearish":
            action = "buy"
        elif fear_greed is not None and fear_greed > 75 and consensus != "bullish":
            action = "sell"
        elif consensus == "bullish" and risk_level == "normal":
            action = "buy"
        elif consensus == "bearish" or risk_level == "high":
            action = "sell"

        if consensus == "bullish" and risk_level == "normal":
            tone = "bullish"
        elif consensus == "bearish" or risk_level == "high":
            tone = "bearish"
        else:
            tone = "mixed"
        lines = COORDINATOR_LINES[tone]
        message = lines[len(context.recent_history) % len(lines)]
        if context.rules:
            message += f" Rule in force: {context.rules[0].action}."

        team_confidence = [msg.confidence for msg in context.team_messages if msg.confidence is not None]
        base = sum(team_confidence) / len(team_confidence) if team_confidence else 0.5
        conviction = 0.65 if consensus != "neutral" else 0.5
        confidence = _clamp_confidence(0.5 * base + 0.5 * conviction - (0.1 if risk_level == "high" else 0.0))

        data: dict = {"consensus": consensus, "risk_level": risk_level, "action": action}
        if action != "hold":
            data["decision"] = {
                "action": action,
                "topic": context.topic.value,
                "price": market.btc_price,
                "confidence": round(confidence, 3),
                "risk_level": risk_level,
                "consensus": consensus,
            }
        return AdvisorResponse(message=message, confidence=confidence, data=data)


RoleHandler = LiveAdvisor | MockAdvisor | CoordinatorAdvisor


# ── Gateway ───────────────────────────────────────────────────────

class AdvisorGateway:
    def __init__(self, handlers: dict[AdvisorRole, RoleHandler]) -> None:
        self._handlers = dict(handlers)

    def is_enabled(self, role: AdvisorRole) -> bool:
        return role in self._handlers

    def describe(self) -> dict[str, str]:
        return {
            role.value: self._handlers[role].kind if role in self._handlers else "disabled"
            for role in AdvisorRole
        }

    def call(self, role: AdvisorRole, prompt: str, context: DiscussionContext) -> AdvisorResponse | None:
        handler = self._handlers.get(role)
        if handler is None:
            return None
        return handler.respond(prompt, context)


def resolve_chat_client(config: Settings) -> ChatClient | None:
    provider = config.ai_provider
    openai = OpenAIClient(config)

    if provider == "openai":
        if not openai.is_configured():
            logger.warning("AI_PROVIDER=openai but OPENAI_API_KEY is not configured")
            return None
        return openai
    if provider == "ollama":
        return OllamaClient(config)
    if openai.is_configured():
        return openai
    return OllamaClient(config)


def build_gateway(
    config: Settings | None = None,
    client: ChatClient | None = None,
    clock: Callable[[], float] = time.time,
) -> AdvisorGateway:
    cfg = config or default_settings
    handlers: dict[AdvisorRole, RoleHandler] = {}
    live_client: ChatClient | None = None
    needs_client = not cfg.mock_mode and any(
        cfg.role_mode(role.value) == "enabled"
        for role in (AdvisorRole.SENTIMENT, AdvisorRole.MARKET, AdvisorRole.MACRO)
    )
    if needs_client:
        live_client = client or resolve_chat_client(cfg)

    for role in (AdvisorRole.SENTIMENT, AdvisorRole.MARKET, AdvisorRole.MACRO):
        mode = "mock" if cfg.mock_mode else cfg.role_mode(role.value)
        if mode == "disabled":
            logger.info("Advisor {} disabled by configuration", role.value)
            continue
        if mode == "mock":
            handlers[role] = MockAdvisor(role)
            continue
        if live_client is None:
            logger.warning("Advisor {} has no provider credentials; treating it as disabled", role.value)
            continue

        limiter = None
        if role is AdvisorRole.SENTIMENT and cfg.sentiment_rate_limit_seconds > 0:
            limiter = RateLimiter(cfg.sentiment_rate_limit_seconds, clock)
        handlers[role] = LiveAdvisor(role, live_client, limiter)

    handlers[AdvisorRole.COORDINATOR] = CoordinatorAdvisor()
    gateway = AdvisorGateway(handlers)
    logger.info("Advisor gateway ready: {}", gateway.describe())
    return gateway
