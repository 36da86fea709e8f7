"""Operational alerts for the session owner, delivered to a Telegram chat."""

import os
from typing import Optional

import httpx

from zapbot.logging_config import get_logger

logger = get_logger("alert_service")

ALERT_BOT_TOKEN = os.environ.get("ALERT_BOT_TOKEN")
ALERT_CHAT_ID = os.environ.get("ALERT_CHAT_ID")
TELEGRAM_SEND_URL = "https://api.telegram.org/bot{token}/sendMessage"

LEVEL_MARKERS = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    text = f"{LEVEL_MARKERS.get(level, '📢')} *{level}* · WhatsApp\n\n{message}"
    if context:
        lines = "\n".join(f"  {key}: {value}" for key, value in context.items())
        text += f"\n\n```\n{lines}\n```"
    return text


async def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Post an alert to the configured Telegram chat.

    Returns False when alerts are not configured or delivery fails; never raises.
    """
    if not ALERT_BOT_TOKEN or not ALERT_CHAT_ID:
        logger.warning(
            "Alert not configured",
            extra={"context": {"level": level, "alert": message}},
        )
        return False

    try:
        async with httpx.AsyncClient(timeout=10) as client:
            response = await client.post(
                TELEGRAM_SEND_URL.format(token=ALERT_BOT_TOKEN),
                json={
                    "chat_id": ALERT_CHAT_ID,
                    "text": format_alert(level, message, context),
                    "parse_mode": "Markdown",
                },
            )
            return response.status_code == 200
    except Exception as e:
        logger.error(f"Failed to send alert: {e}")
        return False


async def alert_critical(message: str, context: Optional[dict] = None) -> bool:
    return await send_alert("CRITICAL", message, context)
