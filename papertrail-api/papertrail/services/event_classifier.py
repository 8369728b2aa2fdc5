from typing import Optional, Union

from papertrail.schemas.events import CANCEL_COMMAND, SKIP_COMMAND, CallbackEvent, MessageEvent, StartEvent
from papertrail.schemas.telegram import TelegramUpdate
from papertrail.services import callback_codec
from papertrail.services.flows import COMMANDS

STEP_COMMANDS = frozenset({CANCEL_COMMAND, SKIP_COMMAND})


def parse_command(text: str, bot_username: Optional[str] = None) -> Optional[tuple[str, str]]:
    """`/cmd@bot args` -> ("cmd", "args"); None if text is not a command for us."""
    if not text.startswith("/"):
        return None
    head, _, args = text.partition(" ")
    command, _, mention = head[1:].partition("@")
    if mention and bot_username and mention.lower() != bot_username.lower().lstrip("@"):
        return None
    return command.lower(), args.strip()


def classify_update(
    update: TelegramUpdate, bot_username: Optional[str] = None
) -> Optional[Union[StartEvent, MessageEvent, CallbackEvent]]:
    """Map a Telegram update to an inbound event, or None if it is not for the engine."""
    if update.callback_query is not None:
        query = update.callback_query
        data = callback_codec.decode(query.data)
        if data is None:
            return None
        chat_id = query.message.chat.id if query.message else query.from_user.id
        return CallbackEvent(
            chat_id=chat_id,
            user_id=query.from_user.id,
            flow_kind=data.flow_kind,
            event_id=str(update.update_id),
            action_code=data.action_code,
            value=data.value,
            query_id=query.id,
            message_id=query.message.message_id if query.message else None,
        )

    message = update.message
    if message is None or message.from_user is None or message.from_user.is_bot:
        return None

    text = (message.text or message.caption or "").strip()
    if text.startswith("/"):
        parsed = parse_command(text, bot_username)
        command, args = parsed if parsed is not None else ("", "")
        if command in COMMANDS:
            return StartEvent(
                chat_id=message.chat.id,
                user_id=message.from_user.id,
                flow_kind=COMMANDS[command],
                text=args,
            )
        # /help, /start or another bot's command is never step input
        text = f"/{command}" if f"/{command}" in STEP_COMMANDS else ""

    attachment_id = message.attachment_id
    if not text and attachment_id is None:
        return None
    return MessageEvent(
        chat_id=message.chat.id,
        user_id=message.from_user.id,
        text=text,
        attachment_id=attachment_id,
    )
