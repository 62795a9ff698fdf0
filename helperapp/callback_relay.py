"""Relay inline-keyboard presses onto the notification bus.

Callback data has the form ``h:<action>:<session_id>[:<value>]``. Roll
values never come from the client: a roll press makes the bot send a
Telegram dice and the animation's value is what gets submitted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import CallbackQueryHandler, ContextTypes

from helperapp.entities import ActionKind, SessionStatus, TurnAction
from helperapp.errors import GameLogicError
from helperapp.games.engine import GameEngine
from helperapp.messaging import CALLBACK_PREFIX, DICE_EMOJI, chat_id_for
from helperapp.notification_bus import NotificationBus
from helperapp.session_store import SessionStore
from helperapp.utils.logging_helpers import ContextLoggerAdapter, add_context

CALLBACK_PATTERN = rf"^{CALLBACK_PREFIX}:"


@dataclass(frozen=True)
class ParsedCallback:
    action: ActionKind
    session_id: str
    value: Optional[int] = None


def parse_callback(data: Optional[str]) -> Optional[ParsedCallback]:
    """Parse callback data, returning ``None`` for anything malformed."""

    if not data:
        return None
    parts = data.split(":")
    if len(parts) not in (3, 4) or parts[0] != CALLBACK_PREFIX:
        return None
    try:
        action = ActionKind(parts[1])
    except ValueError:
        return None
    session_id = parts[2]
    if not session_id:
        return None
    value: Optional[int] = None
    if len(parts) == 4:
        try:
            value = int(parts[3])
        except ValueError:
            return None
    return ParsedCallback(action=action, session_id=session_id, value=value)


class CallbackRelay:
    def __init__(
        self,
        *,
        store: SessionStore,
        engine: GameEngine,
        bus: NotificationBus,
        turn_channel: str,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._bus = bus
        self._turn_channel = turn_channel
        self._logger: ContextLoggerAdapter = add_context(
            logger or logging.getLogger(__name__),
            request_category="callback",
        )

    def handler(self) -> CallbackQueryHandler:
        return CallbackQueryHandler(self.handle_callback, pattern=CALLBACK_PATTERN)

    async def handle_callback(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        query = update.callback_query
        if query is None:
            return
        parsed = parse_callback(query.data)
        if parsed is None:
            await query.answer()
            return

        actor_id = str(query.from_user.id)
        snapshot = await self._store.get(parsed.session_id)
        if snapshot is None or snapshot.status is not SessionStatus.IN_PROGRESS:
            await query.answer("This game has already ended.")
            return
        if snapshot.participant(actor_id) is None:
            await query.answer("This is not your game.", show_alert=True)
            return
        try:
            owner = self._engine.turn_owner(snapshot)
        except GameLogicError:
            # The coordinator will force the error status on the next turn.
            owner = actor_id
        if owner != actor_id:
            await query.answer("Wait for your turn.")
            return

        await query.answer()
        value: Optional[int] = None
        if parsed.action is ActionKind.ROLL:
            value = await self._roll(context, snapshot.channel_ref, snapshot.game_type)
            if value is None:
                return

        action = TurnAction(
            session_id=parsed.session_id,
            actor_id=actor_id,
            kind=parsed.action,
            value=value,
        )
        await self._bus.publish(self._turn_channel, action.to_payload())
        self._logger.debug(
            "Relayed player action",
            extra={
                "session_id": parsed.session_id,
                "game_type": snapshot.game_type,
                "actor_id": actor_id,
                "event_type": "turn_relayed",
                "action": parsed.action.value,
            },
        )

    async def _roll(
        self, context: ContextTypes.DEFAULT_TYPE, destination: str, game_type: str
    ) -> Optional[int]:
        try:
            message = await context.bot.send_dice(
                chat_id=chat_id_for(destination),
                emoji=DICE_EMOJI.get(game_type, "🎲"),
            )
        except TelegramError as exc:
            self._logger.warning(
                "Dice roll could not be sent",
                extra={"event_type": "dice_failed", "error_type": type(exc).__name__},
            )
            return None
        dice = getattr(message, "dice", None)
        return int(dice.value) if dice is not None else None


__all__ = ["CALLBACK_PATTERN", "CallbackRelay", "ParsedCallback", "parse_callback"]
