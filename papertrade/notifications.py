"""Push auto-exit alerts to Telegram."""

import html
import logging
from typing import Optional

from telegram import Bot
from telegram.error import TelegramError

from .config import Config
from .domain.models import Alert, ExitType

logger = logging.getLogger(__name__)


def format_alert(alert: Alert) -> str:
    icon = "🎯" if alert.type == ExitType.TAKE_PROFIT else "🛑"
    title = "Take profit" if alert.type == ExitType.TAKE_PROFIT else "Stop loss"
    sign = "+" if alert.realized_pl >= 0 else "-"
    return (
        f"{icon} <b>{title}: {html.escape(alert.symbol)}</b>\n"
        f"Sold {alert.shares:g} @ ${alert.exit_price:.2f} (target ${alert.target_price:.2f})\n"
        f"P&amp;L: {sign}${abs(alert.realized_pl):.2f} ({alert.realized_pl_percent:+.2f}%)"
    )


class NullNotifier:
    """Used when Telegram is not configured."""

    async def send_alert(self, alert: Alert) -> bool:
        logger.debug("Notification skipped for %s (notifier disabled)", alert.symbol)
        return False


class TelegramNotifier:
    def __init__(self, token: str, chat_id: str, bot: Optional[Bot] = None):
        self.chat_id = chat_id
        self.bot = bot or Bot(token=token)

    async def send_alert(self, alert: Alert) -> bool:
        """Send one alert. Failures are logged, never raised."""
        try:
            await self.bot.send_message(chat_id=self.chat_id, text=format_alert(alert), parse_mode="HTML")
        except TelegramError as exc:
            logger.error("Telegram notification for %s failed: %s", alert.symbol, exc, exc_info=True)
            return False
        logger.info("Telegram notification sent for %s", alert.symbol)
        return True


def build_notifier(config: Config):
    if config.notifications_enabled:
        return TelegramNotifier(config.telegram_bot_token, config.telegram_chat_id)
    return NullNotifier()
