"""
Notification Module
Fire-and-forget status messages to Telegram
"""

import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"
MAX_MESSAGE_LENGTH = 4000


class LogNotifier:
    """Fallback sink used when Telegram is not configured"""

    def notify(self, text: str) -> bool:
        logger.info(f"NOTIFY: {text}")
        return True


class TelegramNotifier:
    """Sends messages through the Telegram Bot API; failures are logged, never raised"""

    def __init__(self, token: str, chat_id: str, session: Optional[requests.Session] = None,
                 timeout: float = 10.0):
        self.url = f"{TELEGRAM_API}/bot{token}/sendMessage"
        self.chat_id = chat_id
        self.session = session or requests.Session()
        self.timeout = timeout

    def notify(self, text: str) -> bool:
        """
        Send a message, split into chunks Telegram accepts

        Returns:
            True if every chunk was delivered
        """
        chunks = [text[i:i + MAX_MESSAGE_LENGTH] for i in range(0, len(text), MAX_MESSAGE_LENGTH)] or ['']
        delivered = True

        for chunk in chunks:
            try:
                resp = self.session.post(self.url, json={'chat_id': self.chat_id, 'text': chunk},
                                         timeout=self.timeout)
                if resp.status_code != 200:
                    logger.error(f"Telegram error: {resp.status_code} - {resp.text}")
                    delivered = False
            except requests.RequestException as e:
                logger.error(f"Error sending Telegram message: {str(e)}")
                delivered = False

        return delivered


def build_notifier(token: Optional[str], chat_id: Optional[str]):
    if token and chat_id:
        return TelegramNotifier(token, chat_id)
    logger.warning("Telegram not configured, notifications go to the log only")
    return LogNotifier()
