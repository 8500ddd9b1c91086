from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import requests

from dexsignal.core.errors import TransportError
from dexsignal.core.interfaces import Buttons
from dexsignal.runner.models import AppState

log = logging.getLogger("dexsignal.telegram")


@dataclass(frozen=True)
class InboundText:
    update_id: int
    chat_id: int
    text: str


@dataclass(frozen=True)
class InboundCallback:
    update_id: int
    chat_id: int
    data: str
    callback_id: str


Inbound = Union[InboundText, InboundCallback]


def parse_update(raw: Dict[str, Any]) -> Optional[Inbound]:
    """Normalise one getUpdates item. Anything without text/callback data is None."""
    update_id = int(raw.get("update_id", 0) or 0)

    msg = raw.get("message") or {}
    if isinstance(msg, dict) and msg.get("text"):
        chat = msg.get("chat") or {}
        if "id" in chat:
            return InboundText(update_id, int(chat["id"]), str(msg["text"]).strip())

    cb = raw.get("callback_query") or {}
    if isinstance(cb, dict) and cb.get("data"):
        chat = (cb.get("message") or {}).get("chat") or {}
        if "id" in chat:
            return InboundCallback(
                update_id, int(chat["id"]), str(cb["data"]), str(cb.get("id", ""))
            )

    return None


def inline_keyboard(buttons: Buttons) -> Dict[str, Any]:
    return {
        "inline_keyboard": [
            [{"text": label, "callback_data": data} for label, data in row]
            for row in buttons
        ]
    }


class TelegramClient:
    """Bot API over plain HTTPS. Every failure surfaces as TransportError."""

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.telegram.org",
        timeout_s: float = 20.0,
        session: requests.Session | None = None,
    ):
        if not token:
            raise ValueError("Telegram bot token must be provided")
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def _call(self, method: str, body: Dict[str, Any], timeout: float | None = None) -> Any:
        url = f"{self.base_url}/bot{self.token}/{method}"
        try:
            r = self.session.post(url, json=body, timeout=timeout or self.timeout_s)
        except requests.RequestException as e:
            raise TransportError(f"Telegram {method} failed: {e}") from e

        try:
            data = r.json()
        except ValueError:
            data = {}

        if r.status_code >= 400 or (isinstance(data, dict) and data.get("ok") is False):
            desc = data.get("description") if isinstance(data, dict) else None
            raise TransportError(desc or f"Telegram API error {r.status_code}")
        return data.get("result") if isinstance(data, dict) else None

    def send_message(self, chat_id: int, text: str, buttons: Optional[Buttons] = None) -> Any:
        body: Dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        if buttons:
            body["reply_markup"] = inline_keyboard(buttons)
        return self._call("sendMessage", body)

    def answer_callback(self, callback_id: str) -> None:
        # ack only, no popup
        if not callback_id:
            return
        try:
            self._call("answerCallbackQuery", {"callback_query_id": callback_id})
        except TransportError as e:
            log.debug("answerCallbackQuery failed: %s", e)

    def get_updates(self, offset: int, timeout: int = 30) -> List[Dict[str, Any]]:
        """Long poll, bounded by `timeout` seconds server side."""
        result = self._call(
            "getUpdates",
            {"offset": offset, "timeout": timeout, "allowed_updates": ["message", "callback_query"]},
            timeout=timeout + 10,
        )
        return result if isinstance(result, list) else []


class ChatNotifier:
    """
    Sends to the chat bound by /start. Delivery failures are logged and
    swallowed, never retried within the same tick.
    """

    def __init__(self, client: TelegramClient, state: AppState):
        self.client = client
        self.state = state

    def bind(self, chat_id: int) -> None:
        if self.state.chat_id != chat_id:
            log.info("notification chat bound: %s", chat_id)
        self.state.chat_id = chat_id

    def notify(self, text: str, buttons: Optional[Buttons] = None) -> bool:
        chat_id = self.state.chat_id
        if chat_id is None:
            return False
        return self.reply(chat_id, text, buttons)

    def reply(self, chat_id: int, text: str, buttons: Optional[Buttons] = None) -> bool:
        try:
            self.client.send_message(chat_id, text, buttons)
            return True
        except TransportError as e:
            log.warning("send to %s failed: %s", chat_id, e)
            return False

    def ack(self, callback_id: str) -> None:
        self.client.answer_callback(callback_id)
