import itertools
import logging
import time
from typing import Any, Callable, List, Optional

from config import settings
from models import ChatMessage
from services import prompts

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Sorry, I encountered an error. Please try again."


class ChatSession:
    """
    Free-form comic/storytelling assistant.

    The underlying SDK chat is created on the first message and reused for the
    rest of the session. Callers await `send` one message at a time.
    """

    def __init__(self, model_factory: Optional[Callable[..., Any]] = None, model_name: Optional[str] = None):
        self._model_factory = model_factory
        self.model_name = model_name or settings.chat_model
        self._chat = None
        self.messages: List[ChatMessage] = []
        self._ids = itertools.count(int(time.time() * 1000))

    @property
    def started(self) -> bool:
        return self._chat is not None

    def _ensure_chat(self):
        if self._chat is None:
            factory = self._model_factory
            if factory is None:
                from services.gemini_service import get_model
                factory = get_model
            model = factory(self.model_name, system_instruction=prompts.CHAT_SYSTEM_INSTRUCTION)
            self._chat = model.start_chat(history=[])
        return self._chat

    async def send(self, message: str) -> ChatMessage:
        """Sends one user message and returns the bot reply (an apology on failure)."""
        self.messages.append(ChatMessage(id=next(self._ids), text=message, sender="user"))
        try:
            chat = self._ensure_chat()
            response = await chat.send_message_async(message)
            text = response.text
        except Exception as e:
            logger.error("Error getting chat response: %s", e)
            text = FALLBACK_REPLY
        reply = ChatMessage(id=next(self._ids), text=text, sender="bot")
        self.messages.append(reply)
        return reply
