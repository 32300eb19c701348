from __future__ import annotations

import requests
from loguru import logger

from .models import AdvisorRole, Message
from .settings import Settings, settings as default_settings


class WebhookRelay:
    """Forwards transcript messages to an external webhook (chat overlay, bot, etc.)."""

    def __init__(self, config: Settings | None = None, roles: set[str] | None = None) -> None:
        cfg = config or default_settings
        self.webhook_url = cfg.alert_webhook_url.strip()
        self.timeout = cfg.alert_webhook_timeout_seconds
        self.roles = roles or {role.value for role in AdvisorRole}

    def should_send(self, message: Message) -> bool:
        if not self.webhook_url:
            return False
        return message.agent in self.roles

    def __call__(self, message: Message) -> None:
        if not self.should_send(message):
            return

        payload = {
            "id": message.id,
            "type": message.agent,
            "topic": message.topic,
            "message": message.message,
            "timestamp": message.timestamp,
            "confidence": message.confidence,
        }
        try:
            requests.post(self.webhook_url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("Webhook relay failed for {}: {}", message.id, exc)
