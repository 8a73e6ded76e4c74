"""
Async REST client for the negotiation chat API.

Reads (conversation list, message history, offers) are retried with
exponential backoff on transport failures and 5xx responses.  Mutations
(send, read, offer actions) are never retried here; the caller decides,
and sends carry a ``client_id`` so an explicit retry is safe.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)


class ChatAPIError(Exception):
    """
    A failed API call.

    ``code`` is the server's stable error code when there is one,
    ``retryable`` marks transport/5xx failures and ``offer`` carries the
    authoritative offer returned with state errors.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        retryable: bool = False,
        offer: Optional[dict] = None,
        fields: Optional[dict] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.retryable = retryable
        self.offer = offer
        self.fields = fields or {}

    @property
    def is_state_error(self) -> bool:
        return self.status_code == 409

    @classmethod
    def from_response(cls, response: httpx.Response) -> "ChatAPIError":
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        return cls(
            str(body.get("detail") or response.reason_phrase or "Request failed"),
            status_code=response.status_code,
            code=body.get("code"),
            retryable=response.status_code >= 500,
            offer=body.get("offer"),
            fields=body.get("fields"),
        )


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ChatAPIError) and exc.retryable


read_retry = retry(
    retry=retry_if_exception(_is_retryable),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    reraise=True,
)


class ChatAPI:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=5.0),
        )

    async def __aenter__(self) -> "ChatAPI":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise ChatAPIError(str(e) or e.__class__.__name__, retryable=True) from e
        if response.status_code >= 400:
            raise ChatAPIError.from_response(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ---------- reads (retried) ----------
    @read_retry
    async def list_conversations(self, archived: Optional[bool] = None) -> list[dict]:
        params = {} if archived is None else {"archived": str(archived).lower()}
        return await self._request("GET", "/api/messaging/conversations/", params=params)

    @read_retry
    async def unread_count(self) -> int:
        data = await self._request("GET", "/api/messaging/unread-count/")
        return int(data["unread_count"])

    @read_retry
    async def list_messages(self, conversation_id, page: int = 1) -> dict:
        return await self._request(
            "GET", f"/api/messaging/conversations/{conversation_id}/messages/", params={"page": page},
        )

    @read_retry
    async def list_offers(self, conversation_id) -> list[dict]:
        return await self._request("GET", f"/api/messaging/conversations/{conversation_id}/offers/")

    @read_retry
    async def get_offer(self, offer_id) -> dict:
        return await self._request("GET", f"/api/offers/{offer_id}/")

    # ---------- mutations (never retried) ----------
    async def start_conversation(self, recipient_id) -> dict:
        return await self._request("POST", "/api/messaging/conversations/", json={"recipient_id": recipient_id})

    async def send_message(
        self,
        conversation_id,
        content: Optional[str] = None,
        file: Optional[dict] = None,
        client_id: Optional[str] = None,
    ) -> dict:
        body: dict[str, Any] = {"content": content or ""}
        if file:
            body["file"] = file
        if client_id:
            body["client_id"] = client_id
        return await self._request("POST", f"/api/messaging/conversations/{conversation_id}/messages/", json=body)

    async def mark_read(self, conversation_id) -> dict:
        return await self._request("POST", f"/api/messaging/conversations/{conversation_id}/read/")

    async def upload(self, filename: str, content: bytes, mime_type: str = "application/octet-stream") -> dict:
        return await self._request("POST", "/api/messaging/uploads/", files={"file": (filename, content, mime_type)})

    async def create_offer(self, **fields) -> dict:
        return await self._request("POST", "/api/offers/", json=fields)

    async def accept_offer(self, offer_id) -> dict:
        return await self._request("POST", f"/api/offers/{offer_id}/accept/")

    async def reject_offer(self, offer_id) -> dict:
        return await self._request("POST", f"/api/offers/{offer_id}/reject/")

    async def counter_offer(self, offer_id, **counter) -> dict:
        return await self._request("POST", f"/api/offers/{offer_id}/counter/", json=counter)

    async def accept_counter(self, offer_id) -> dict:
        return await self._request("POST", f"/api/offers/{offer_id}/accept-counter/")
