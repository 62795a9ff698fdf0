"""Prompt delivery to the chat that owns a session.

The coordinator only talks to the :class:`PromptSender` protocol; the
Telegram implementation below is what production workers plug in.
"""

from __future__ import annotations

import html
import logging
from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict, List, Optional, Protocol, Union

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError

from helperapp.entities import ActionKind, Archetype, Money
from helperapp.games.base import PromptSnapshot
from helperapp.retry_manager import RetryManager
from helperapp.utils.logging_helpers import ContextLoggerAdapter, add_context

CALLBACK_PREFIX = "h"

_ACTION_LABELS: Dict[ActionKind, str] = {
    ActionKind.ROLL: "🎲 Roll",
    ActionKind.CASHOUT: "💰 Cash out",
    ActionKind.CONTINUE: "➡️ Continue",
}

_GAME_TITLES: Dict[str, str] = {
    Archetype.ESCALATING.value: "🎯 Escalating stakes",
    Archetype.ROUNDS.value: "🎲 Round progression",
    Archetype.DUEL.value: "🎳 Dice duel",
}

# Telegram dice emoji whose animation yields a 1-6 value.
DICE_EMOJI: Dict[str, str] = {
    Archetype.ESCALATING.value: "🎯",
    Archetype.ROUNDS.value: "🎲",
    Archetype.DUEL.value: "🎳",
}


class PromptSender(Protocol):
    async def send_prompt(self, destination: str, prompt: PromptSnapshot) -> Optional[str]:
        """Deliver ``prompt`` and return an opaque handle for later deletion."""

    async def delete_prompt(self, destination: str, handle: str) -> None:
        ...


class CurrencyFormatter(Protocol):
    def convert_to_display_currency(self, amount: Money) -> str:
        ...


class LamportFormatter:
    """Render integer smallest-unit amounts in whole-coin notation."""

    def __init__(self, *, symbol: str = "SOL", decimals: int = 9, precision: int = 4) -> None:
        self.symbol = symbol
        self._scale = Decimal(10) ** int(decimals)
        self._quantum = Decimal(1).scaleb(-int(precision))

    @classmethod
    def from_mapping(cls, section: Dict[str, Any]) -> "LamportFormatter":
        return cls(
            symbol=str(section.get("symbol", "SOL")),
            decimals=int(section.get("decimals", 9)),
            precision=int(section.get("display_precision", 4)),
        )

    def convert_to_display_currency(self, amount: Money) -> str:
        value = (Decimal(int(amount)) / self._scale).quantize(self._quantum, rounding=ROUND_DOWN)
        return f"{value} {self.symbol}"


def callback_data(action: ActionKind, session_id: str, value: Optional[int] = None) -> str:
    parts = [CALLBACK_PREFIX, action.value, session_id]
    if value is not None:
        parts.append(str(value))
    return ":".join(parts)


def chat_id_for(destination: str) -> Union[int, str]:
    try:
        return int(destination)
    except (TypeError, ValueError):
        return destination


class TelegramPromptSender:
    def __init__(
        self,
        bot: Bot,
        *,
        currency: CurrencyFormatter,
        retry_manager: Optional[RetryManager] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._bot = bot
        self._currency = currency
        self._logger: ContextLoggerAdapter = add_context(
            logger or logging.getLogger(__name__),
            request_category="prompt",
        )
        self._retry = retry_manager or RetryManager(logger=self._logger.logger)

    def render_text(self, prompt: PromptSnapshot) -> str:
        title = _GAME_TITLES.get(prompt.game_type, prompt.game_type)
        lines: List[str] = [
            f"<b>{html.escape(title)}</b>",
            f"Player: {html.escape(prompt.actor_name)}",
            f"Stake: {html.escape(self._currency.convert_to_display_currency(prompt.stake_amount))}",
        ]
        if prompt.last_label:
            lines.append(f"Last roll: {html.escape(prompt.last_label.replace('_', ' '))}")
        for key, value in prompt.details.items():
            if isinstance(value, (list, tuple)):
                value = ", ".join(str(item) for item in value) or "-"
            lines.append(f"{html.escape(key.replace('_', ' ').capitalize())}: {html.escape(str(value))}")
        if prompt.timeout_seconds:
            lines.append(f"⏱ {int(prompt.timeout_seconds)}s to act")
        return "\n".join(lines)

    def build_markup(self, prompt: PromptSnapshot) -> InlineKeyboardMarkup:
        row = [
            InlineKeyboardButton(
                text=_ACTION_LABELS[action],
                callback_data=callback_data(action, prompt.session_id),
            )
            for action in prompt.allowed_actions
        ]
        return InlineKeyboardMarkup([row])

    async def send_prompt(self, destination: str, prompt: PromptSnapshot) -> Optional[str]:
        send = self._retry.retry_call("send_prompt")(self._bot.send_message)
        try:
            message = await send(
                chat_id=chat_id_for(destination),
                text=self.render_text(prompt),
                parse_mode=ParseMode.HTML,
                reply_markup=self.build_markup(prompt),
            )
        except TelegramError as exc:
            self._logger.warning(
                "Prompt delivery failed",
                extra={
                    "session_id": prompt.session_id,
                    "game_type": prompt.game_type,
                    "event_type": "prompt_send_failed",
                    "error_type": type(exc).__name__,
                },
            )
            return None
        if message is None:
            return None
        return str(message.message_id)

    async def delete_prompt(self, destination: str, handle: str) -> None:
        try:
            message_id = int(handle)
        except (TypeError, ValueError):
            return
        delete = self._retry.retry_call("delete_prompt")(self._bot.delete_message)
        try:
            await delete(chat_id=chat_id_for(destination), message_id=message_id)
        except BadRequest:
            # Already gone or too old to delete.
            return
        except TelegramError as exc:
            self._logger.debug(
                "Prompt deletion failed",
                extra={"event_type": "prompt_delete_failed", "error_type": type(exc).__name__},
            )


__all__ = [
    "CALLBACK_PREFIX",
    "CurrencyFormatter",
    "DICE_EMOJI",
    "LamportFormatter",
    "PromptSender",
    "TelegramPromptSender",
    "callback_data",
    "chat_id_for",
]
