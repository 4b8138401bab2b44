"""Test doubles for the push provider and Redis."""

import asyncio
import fnmatch

from lifelink.core.errors import DeliveryError, DeliveryErrorCategory
from lifelink.services.push_provider import PushProvider, SendResult


class FakePushProvider(PushProvider):
    """Records every call; tokens listed as invalid/failing fail accordingly."""

    def __init__(
        self,
        name: str = "fake",
        *,
        invalid_tokens=(),
        failing_tokens=(),
        delay: float = 0.0,
        verify_ok: bool = True,
    ):
        self.name = name
        self.invalid_tokens = set(invalid_tokens)
        self.failing_tokens = set(failing_tokens)
        self.delay = delay
        self.verify_ok = verify_ok
        self.multicast_calls: list[tuple[list[str], dict]] = []
        self.topic_calls: list[tuple[str, dict]] = []

    async def send(self, token, message):
        if self.delay:
            await asyncio.sleep(self.delay)
        if token in self.invalid_tokens:
            return SendResult(
                token=token,
                success=False,
                error=DeliveryError(
                    "Requested entity was not found.",
                    category=DeliveryErrorCategory.INVALID_TOKEN,
                    code="UNREGISTERED",
                ),
            )
        if token in self.failing_tokens:
            return SendResult(
                token=token,
                success=False,
                error=DeliveryError("The service is currently unavailable.", code="UNAVAILABLE"),
            )
        return SendResult(token=token, success=True, message_id=f"{self.name}-{token}")

    async def send_multicast(self, tokens, message):
        self.multicast_calls.append((list(tokens), message))
        return await super().send_multicast(tokens, message)

    async def send_to_topic(self, topic, message):
        self.topic_calls.append((topic, message))
        return SendResult(token=topic, success=True, message_id=f"{self.name}-topic")

    async def verify(self):
        return self.verify_ok

    @property
    def sent_tokens(self) -> list[str]:
        return [t for tokens, _ in self.multicast_calls for t in tokens]


class RecordingFactory:
    """Provider factory that hands out one tenant provider and counts builds."""

    def __init__(self, provider: FakePushProvider, *, delay: float = 0.0):
        self.provider = provider
        self.delay = delay
        self.calls = []

    async def __call__(self, credentials):
        self.calls.append(credentials)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.provider


class FakeRedis:
    """Just enough of redis.Redis for the notification cache."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = value
        self.ttls[key] = ex
        return True

    def scan_iter(self, match=None, count=None):
        return [k for k in list(self.store) if match is None or fnmatch.fnmatch(k, match)]

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

