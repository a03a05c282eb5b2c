import asyncio
from types import SimpleNamespace

from services import prompts
from services.chat_service import FALLBACK_REPLY, ChatSession


class _FakeChat:
    def __init__(self, replies):
        self.replies = list(replies)
        self.sent = []

    async def send_message_async(self, message):
        self.sent.append(message)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(text=reply)


class _FakeModelFactory:
    def __init__(self, chat):
        self.chat = chat
        self.created = []

    def __call__(self, model_name, **kwargs):
        self.created.append((model_name, kwargs))
        return SimpleNamespace(start_chat=lambda history: self.chat)


def test_chat_is_created_once_and_reused():
    chat = _FakeChat(["Hi there!", "Try a splash page."])
    factory = _FakeModelFactory(chat)
    session = ChatSession(model_factory=factory, model_name="chat-model")

    first = asyncio.run(session.send("Hello"))
    second = asyncio.run(session.send("Any layout tips?"))

    assert first.text == "Hi there!" and first.sender == "bot"
    assert second.text == "Try a splash page."
    assert len(factory.created) == 1
    name, kwargs = factory.created[0]
    assert name == "chat-model"
    assert kwargs["system_instruction"] == prompts.CHAT_SYSTEM_INSTRUCTION
    assert chat.sent == ["Hello", "Any layout tips?"]


def test_transcript_alternates_user_and_bot():
    session = ChatSession(model_factory=_FakeModelFactory(_FakeChat(["a", "b"])))

    asyncio.run(session.send("one"))
    asyncio.run(session.send("two"))

    assert [(m.sender, m.text) for m in session.messages] == [
        ("user", "one"), ("bot", "a"), ("user", "two"), ("bot", "b"),
    ]
    ids = [m.id for m in session.messages]
    assert ids == sorted(ids) and len(set(ids)) == 4


def test_failure_returns_apology_and_keeps_session_usable():
    chat = _FakeChat([RuntimeError("503"), "Back online."])
    session = ChatSession(model_factory=_FakeModelFactory(chat))

    failed = asyncio.run(session.send("Hello?"))
    recovered = asyncio.run(session.send("Still there?"))

    assert failed.text == FALLBACK_REPLY
    assert recovered.text == "Back online."
    assert session.started


def test_model_creation_failure_is_an_apology():
    def broken_factory(model_name, **kwargs):
        raise RuntimeError("no key")

    session = ChatSession(model_factory=broken_factory)

    reply = asyncio.run(session.send("Hello"))

    assert reply.text == FALLBACK_REPLY
    assert not session.started
