"""Push provider abstraction layer.

Supports Firebase Cloud Messaging (HTTP v1) and a no-op mock with a
unified interface. Providers never raise for per-recipient failures;
each token gets a SendResult carrying a classified DeliveryError.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import anyio
import httpx
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import service_account

from lifelink.core.errors import CredentialError, DeliveryError, DeliveryErrorCategory
from lifelink.core.structured_logging import mask_token

logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
FCM_TOKEN_URI = "https://oauth2.googleapis.com/token"
FCM_BASE_URL = "https://fcm.googleapis.com/v1"

# Error codes meaning the token will never work again
INVALID_TOKEN_CODES = frozenset(
    {
        "UNREGISTERED",
        "SENDER_ID_MISMATCH",
        "messaging/registration-token-not-registered",
        "messaging/invalid-registration-token",
    }
)


@dataclass
class SendResult:
    """Outcome of sending to one token (or one topic)."""

    token: str
    success: bool
    message_id: str | None = None
    error: DeliveryError | None = None

    @property
    def is_invalid_token(self) -> bool:
        return self.error is not None and self.error.is_invalid_token


@dataclass
class MulticastResult:
    """Aggregate outcome of a multicast. Partial success is a normal result."""

    success_count: int = 0
    failure_count: int = 0
    invalid_tokens: list[str] = field(default_factory=list)
    failed_tokens: list[str] = field(default_factory=list)
    responses: list[SendResult] = field(default_factory=list)

    @classmethod
    def from_responses(cls, responses: list[SendResult]) -> "MulticastResult":
        result = cls()
        for response in responses:
            result.add(response)
        return result

    @classmethod
    def failed_batch(cls, tokens: list[str], error: DeliveryError) -> "MulticastResult":
        """Every token failed with the same (transient) error."""
        return cls.from_responses(
            [SendResult(token=t, success=False, error=error) for t in tokens]
        )

    def add(self, response: SendResult) -> None:
        self.responses.append(response)
        if response.success:
            self.success_count += 1
            return
        self.failure_count += 1
        if response.is_invalid_token:
            self.invalid_tokens.append(response.token)
        else:
            self.failed_tokens.append(response.token)

    def merge(self, other: "MulticastResult") -> None:
        for response in other.responses:
            self.add(response)

    @property
    def succeeded_tokens(self) -> set[str]:
        return {r.token for r in self.responses if r.success}


def is_invalid_token_code(code: str | None) -> bool:
    return bool(code) and code in INVALID_TOKEN_CODES


def classify_fcm_error(status_code: int, payload: dict | None) -> DeliveryError:
    """
    Classify an FCM v1 error response.

    UNREGISTERED / SENDER_ID_MISMATCH (and INVALID_ARGUMENT about the
    registration token) mean the token is dead; everything else is
    treated as transient (quota, outage, auth).
    """
    error = (payload or {}).get("error") or {}
    message = error.get("message") or f"FCM returned HTTP {status_code}"
    code = error.get("status")
    for detail in error.get("details") or []:
        if isinstance(detail, dict) and detail.get("errorCode"):
            code = detail["errorCode"]
            break

    invalid = is_invalid_token_code(code) or (
        code == "INVALID_ARGUMENT" and "registration token" in message.lower()
    )
    category = DeliveryErrorCategory.INVALID_TOKEN if invalid else DeliveryErrorCategory.TRANSIENT
    return DeliveryError(message, category=category, code=code)


class PushProvider(ABC):
    """Abstract base class for push providers."""

    name: str = "base"

    @abstractmethod
    async def send(self, token: str, message: dict[str, Any]) -> SendResult:
        """Send a message to one device token."""
        pass

    @abstractmethod
    async def send_to_topic(self, topic: str, message: dict[str, Any]) -> SendResult:
        """Send a message to every device subscribed to a topic."""
        pass

    @abstractmethod
    async def verify(self) -> bool:
        """Check that the provider can authenticate."""
        pass

    async def send_multicast(self, tokens: list[str], message: dict[str, Any]) -> list[SendResult]:
        """Send one message to many tokens. Results are in token order."""
        return list(await asyncio.gather(*(self.send(token, message) for token in tokens)))


class MockPushProvider(PushProvider):
    """No-op provider for environments without push credentials."""

    name = "mock"

    async def send(self, token: str, message: dict[str, Any]) -> SendResult:
        logger.debug("[DRY RUN] Push skipped for token=%s", mask_token(token))
        return SendResult(token=token, success=True, message_id=f"mock-{uuid.uuid4().hex[:12]}")

    async def send_multicast(self, tokens: list[str], message: dict[str, Any]) -> list[SendResult]:
        if tokens:
            logger.info("[DRY RUN] Push multicast skipped for %d tokens", len(tokens))
        return [
            SendResult(token=t, success=True, message_id=f"mock-{uuid.uuid4().hex[:12]}")
            for t in tokens
        ]

    async def send_to_topic(self, topic: str, message: dict[str, Any]) -> SendResult:
        logger.info("[DRY RUN] Push to topic %s skipped", topic)
        return SendResult(token=topic, success=True, message_id=f"mock-{uuid.uuid4().hex[:12]}")

    async def verify(self) -> bool:
        return True


class FcmPushProvider(PushProvider):
    """Firebase Cloud Messaging HTTP v1 provider (service account auth)."""

    name = "fcm"

    def __init__(
        self,
        project_id: str,
        client_email: str,
        private_key: str,
        *,
        credentials: Any | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
        max_concurrency: int = 50,
    ):
        if not (project_id and client_email and (private_key or credentials)):
            raise CredentialError("FCM credentials are incomplete")
        self.project_id = project_id
        self.client_email = client_email
        self.timeout = timeout
        self._transport = transport
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._credentials = credentials or self._build_credentials(
            project_id, client_email, private_key
        )

    @staticmethod
    def _build_credentials(project_id: str, client_email: str, private_key: str):
        info = {
            "type": "service_account",
            "project_id": project_id,
            "client_email": client_email,
            # Keys pasted through env vars/forms often carry literal "\n"
            "private_key": private_key.replace("\\n", "\n"),
            "token_uri": FCM_TOKEN_URI,
        }
        try:
            return service_account.Credentials.from_service_account_info(
                info, scopes=[FCM_SCOPE]
            )
        except (ValueError, KeyError) as exc:
            raise CredentialError("Invalid FCM service account credentials") from exc

    @property
    def send_url(self) -> str:
        return f"{FCM_BASE_URL}/projects/{self.project_id}/messages:send"

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _access_token(self) -> str:
        """Return a valid OAuth2 access token, refreshing off the event loop."""
        if not self._credentials.valid:
            try:
                await anyio.to_thread.run_sync(
                    self._credentials.refresh, google_requests.Request()
                )
            except google_auth_exceptions.GoogleAuthError as exc:
                raise CredentialError(f"FCM token refresh failed: {type(exc).__name__}") from exc
        return self._credentials.token

    async def _post(
        self,
        client: httpx.AsyncClient,
        access_token: str,
        target: str,
        message: dict[str, Any],
    ) -> SendResult:
        try:
            async with self._semaphore:
                response = await client.post(
                    self.send_url,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Content-Type": "application/json",
                    },
                    json={"message": message},
                )
        except httpx.RequestError as exc:
            return SendResult(
                token=target,
                success=False,
                error=DeliveryError(f"FCM request failed: {type(exc).__name__}"),
            )

        if response.status_code == 200:
            return SendResult(token=target, success=True, message_id=response.json().get("name"))

        try:
            payload = response.json()
        except ValueError:
            payload = None
        error = classify_fcm_error(response.status_code, payload)
        logger.info(
            "FCM send failed for %s: %s (%s)",
            mask_token(target),
            error.code,
            error.category.value,
        )
        return SendResult(token=target, success=False, error=error)

    async def _send_many(self, targets: list[tuple[str, dict[str, Any]]]) -> list[SendResult]:
        try:
            access_token = await self._access_token()
        except CredentialError as exc:
            error = DeliveryError(str(exc))
            return [SendResult(token=t, success=False, error=error) for t, _ in targets]

        async with self._http_client() as client:
            return list(
                await asyncio.gather(
                    *(self._post(client, access_token, t, m) for t, m in targets)
                )
            )

    async def send(self, token: str, message: dict[str, Any]) -> SendResult:
        return (await self._send_many([(token, {**message, "token": token})]))[0]

    async def send_multicast(self, tokens: list[str], message: dict[str, Any]) -> list[SendResult]:
        if not tokens:
            return []
        return await self._send_many([(t, {**message, "token": t}) for t in tokens])

    async def send_to_topic(self, topic: str, message: dict[str, Any]) -> SendResult:
        return (await self._send_many([(topic, {**message, "topic": topic})]))[0]

    async def verify(self) -> bool:
        """Obtain an access token with the stored service account."""
        try:
            await self._access_token()
        except CredentialError as e:
            logger.warning(f"FCM credential verification failed: {e}")
            return False
        return True
