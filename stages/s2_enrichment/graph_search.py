"""Microsoft Graph mailbox search"""

import asyncio
import datetime as dt
import time
from typing import List, Optional

import httpx

from core.exceptions import TransientItemError
from core.logging_config import get_logger
from core.models import EmailContext, WorkItem

from .matcher import best_email_match

logger = get_logger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
TOKEN_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
MAX_MESSAGES = 50

# Refresh tokens this many seconds before they expire
TOKEN_EXPIRY_MARGIN = 60


def _parse_received(value: Optional[str]) -> Optional[dt.datetime]:
    if not value:
        return None
    try:
        return dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class GraphEmailSearch:
    """Looks up the email best matching a transaction.

    Authenticates with the client-credentials flow and searches one mailbox
    for messages received within ``search_days`` of the transaction date.
    Instances are callable and satisfy ``ContextLookupFn``.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        mailbox: str,
        search_days: int = 3,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.mailbox = mailbox
        self.search_days = search_days
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._token: Optional[str] = None
        self._token_expires = 0.0
        self._token_lock = asyncio.Lock()

    async def __call__(self, item: WorkItem) -> Optional[EmailContext]:
        emails = await self.search(item)
        match = best_email_match(item, emails)
        logger.debug(
            "email_match",
            item_id=item.id,
            candidates=len(emails),
            matched=match is not None,
        )
        return match

    async def search(self, item: WorkItem) -> List[EmailContext]:
        """
        Emails received around the transaction date

        Raises:
            TransientItemError: If Graph cannot be reached or refuses the request
        """
        start = dt.datetime.combine(item.date - dt.timedelta(days=self.search_days), dt.time())
        end = dt.datetime.combine(item.date + dt.timedelta(days=self.search_days), dt.time())
        params = {
            "$filter": (
                f"receivedDateTime ge {start:%Y-%m-%dT%H:%M:%SZ} and "
                f"receivedDateTime le {end:%Y-%m-%dT%H:%M:%SZ}"
            ),
            "$select": "subject,bodyPreview,receivedDateTime",
            "$top": str(MAX_MESSAGES),
        }

        token = await self._get_token()
        try:
            response = await self._client.get(
                f"{GRAPH_BASE_URL}/users/{self.mailbox}/messages",
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
            messages = response.json().get("value") or []
        except (httpx.HTTPError, ValueError) as e:
            raise TransientItemError(f"Email search failed: {e}", item_id=item.id) from e

        return [
            EmailContext(
                subject=message["subject"],
                snippet=message["bodyPreview"],
                received_at=_parse_received(message.get("receivedDateTime")),
            )
            for message in messages
            if message.get("subject") is not None and message.get("bodyPreview") is not None
        ]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get_token(self) -> str:
        async with self._token_lock:
            if self._token and time.monotonic() < self._token_expires:
                return self._token

            try:
                response = await self._client.post(
                    TOKEN_URL.format(tenant_id=self.tenant_id),
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "scope": GRAPH_SCOPE,
                    },
                )
                response.raise_for_status()
                payload = response.json()
            except (httpx.HTTPError, ValueError) as e:
                raise TransientItemError(f"Graph authentication failed: {e}") from e

            self._token = payload["access_token"]
            expires_in = float(payload.get("expires_in", 3600))
            self._token_expires = time.monotonic() + max(0.0, expires_in - TOKEN_EXPIRY_MARGIN)
            logger.info("graph_token_acquired", tenant_id=self.tenant_id, expires_in=expires_in)
            return self._token
