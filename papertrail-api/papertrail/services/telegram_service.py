from typing import Optional

import httpx

from papertrail.logging_config import get_logger

logger = get_logger("telegram_service")


class TelegramService:
    """Thin client for the Telegram Bot API."""

    BASE_URL = "https://api.telegram.org/bot{token}"

    def __init__(self, bot_token: str, timeout: float = 30.0):
        self.bot_token = bot_token
        self.base_url = self.BASE_URL.format(token=bot_token)
        self.timeout = timeout

    def _make_request(self, method: str, data: Optional[dict] = None, files: Optional[dict] = None) -> dict:
        """Make request to Telegram API."""
        url = f"{self.base_url}/{method}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                if files:
                    response = client.post(url, data=data or {}, files=files)
                else:
                    response = client.post(url, json=data or {})
                result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Telegram API error: {e}", extra={"context": {"method": method}})
            return {"ok": False, "error": str(e)}
        if not result.get("ok"):
            logger.warning(
                "Telegram API call rejected",
                extra={"context": {"method": method, "description": result.get("description")}},
            )
        return result

    def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = None,
    ) -> dict:
        """Send message to Telegram chat."""
        data = {"chat_id": chat_id, "text": text}
        if parse_mode:
            data["parse_mode"] = parse_mode
        if reply_markup:
            data["reply_markup"] = reply_markup
        return self._make_request("sendMessage", data)

    def send_document(
        self,
        chat_id: int,
        filename: str,
        content: bytes,
        caption: Optional[str] = None,
        mime_type: str = "application/octet-stream",
    ) -> dict:
        """Upload an in-memory file as a document."""
        data = {"chat_id": str(chat_id)}
        if caption:
            data["caption"] = caption
        return self._make_request("sendDocument", data=data, files={"document": (filename, content, mime_type)})

    def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None) -> dict:
        """Stop the button spinner; optional toast text."""
        data = {"callback_query_id": callback_query_id}
        if text:
            data["text"] = text
        return self._make_request("answerCallbackQuery", data)
