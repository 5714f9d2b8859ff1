# chatorders/deps.py
from typing import Optional

from chatorders.db import settings
from chatorders.messaging import LogTransport, TelegramTransport, Transport
from chatorders.nlu import ActionProvider, HttpActionProvider


def get_transport() -> Transport:
    if settings.telegram_bot_token:
        return TelegramTransport(settings.telegram_bot_token)
    return LogTransport()


def get_action_provider() -> Optional[ActionProvider]:
    if settings.nlu_url:
        return HttpActionProvider(settings.nlu_url, timeout=settings.nlu_timeout)
    return None
