import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class DummyMessage:
    """Records every reply_text call made through safe_send_text."""

    def __init__(self) -> None:
        self.replies: list[str] = []
        self.kwargs: list[dict] = []

    async def reply_text(self, text: str, **kwargs) -> None:
        self.replies.append(text)
        self.kwargs.append(kwargs)


class StubResolver:
    """Stands in for LookupResolver: returns a fixed result or raises."""

    def __init__(self, result=None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.keys: list[str] = []
        self.provider_names = ["stub"]

    async def resolve(self, key: str, *, request_context=None):
        self.keys.append(key)
        if self.error is not None:
            raise self.error
        return self.result


class StubMailClient:
    """Stands in for TempMailClient with canned mailboxes and messages."""

    def __init__(self, mailbox=None, messages=None, renewed=None, error: Exception | None = None) -> None:
        self.mailbox = mailbox
        self.messages = list(messages or [])
        self.renewed = renewed
        self.error = error
        self.read_calls: list = []

    async def create_mailbox(self, *, request_context=None):
        if self.error is not None:
            raise self.error
        return self.mailbox

    async def read_inbox(self, mailbox, *, request_context=None):
        self.read_calls.append(mailbox)
        if self.error is not None:
            raise self.error
        return self.renewed or mailbox, self.messages
