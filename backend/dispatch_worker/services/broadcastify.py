# dispatch_worker/services/broadcastify.py
"""
Broadcastify Calls API: request signing, user authentication and the
live-calls feed.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
import jwt
from pydantic import BaseModel, ConfigDict, ValidationError

from .. import config
from ..exceptions import AuthenticationError, ConfigError, FeedError
from ..schemas import FeedPage

log = logging.getLogger(__name__)

LIVE_CALLS_URL = "https://api.bcfy.io/calls/v1/live/"
AUTH_URL = "https://api.bcfy.io/common/v1/auth"

TOKEN_TTL_SECONDS = 3600

# Position value stored before the first successful fetch.
INITIAL_CURSOR = 0


@dataclass(frozen=True)
class ApiCredentials:
    api_key_id: str
    api_key_secret: str
    app_id: str
    username: str
    password: str

    @classmethod
    def from_config(cls) -> "ApiCredentials":
        values = {
            "api_key_id": config.BROADCASTIFY_API_KEY_ID,
            "api_key_secret": config.BROADCASTIFY_API_KEY_SECRET,
            "app_id": config.BROADCASTIFY_APP_ID,
            "username": config.BROADCASTIFY_USERNAME,
            "password": config.BROADCASTIFY_PASSWORD,
        }
        missing = [k for k, v in values.items() if not v]
        if missing:
            raise ConfigError(f"Broadcastify credentials not configured: {', '.join(missing)}")
        return cls(**values)


class UserAuth(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    uid: str
    token: str
    exp: int
    username: Optional[str] = None


def sign_request_token(
    creds: ApiCredentials,
    uid: Optional[str] = None,
    user_token: Optional[str] = None,
    now: Optional[int] = None,
) -> str:
    """HS256 bearer token for one API call; user claims are optional."""
    issued = int(now if now is not None else time.time())
    payload = {
        "iss": creds.app_id,
        "iat": issued,
        "exp": issued + TOKEN_TTL_SECONDS,
    }
    if uid and user_token:
        payload["sub"] = int(uid)
        payload["utk"] = user_token

    return jwt.encode(
        payload,
        creds.api_key_secret,
        algorithm="HS256",
        headers={"kid": creds.api_key_id},
    )


class CredentialCache:
    """Holds the authenticated user until its ``exp`` passes."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._auth: Optional[UserAuth] = None

    def get(self) -> Optional[UserAuth]:
        if self._auth is not None and self._auth.exp > self._clock():
            return self._auth
        return None

    def put(self, auth: UserAuth) -> None:
        self._auth = auth

    def clear(self) -> None:
        self._auth = None


class BroadcastifyFeed:
    def __init__(
        self,
        creds: ApiCredentials,
        group_id: str = config.BROADCASTIFY_GROUP_ID,
        cache: Optional[CredentialCache] = None,
        timeout: float = 30.0,
    ):
        self.creds = creds
        self.group_id = group_id
        self.cache = cache or CredentialCache()
        self.timeout = timeout

    @classmethod
    def from_config(cls, cache: Optional[CredentialCache] = None) -> "BroadcastifyFeed":
        return cls(ApiCredentials.from_config(), cache=cache)

    async def authenticate(self, client: httpx.AsyncClient) -> UserAuth:
        cached = self.cache.get()
        if cached is not None:
            return cached

        try:
            resp = await client.post(
                AUTH_URL,
                headers={"Authorization": f"Bearer {sign_request_token(self.creds)}"},
                data={"username": self.creds.username, "password": self.creds.password},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Authentication request failed: {exc}") from exc

        if resp.status_code >= 400:
            log.error("Broadcastify authentication failed: %s %s", resp.status_code, resp.text[:200])
            raise AuthenticationError(f"Authentication failed: HTTP {resp.status_code}")

        try:
            auth = UserAuth.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise AuthenticationError("Malformed authentication response") from exc
        if not auth.uid.isdigit():
            raise AuthenticationError(f"Non-numeric uid in authentication response: {auth.uid!r}")

        self.cache.put(auth)
        return auth

    async def fetch_page(self, client: httpx.AsyncClient, cursor: int) -> FeedPage:
        """
        One page of live calls after ``cursor``.

        At the initial cursor the feed is asked for its bounded backlog
        (``init=1``) instead of an incremental page.
        """
        auth = await self.authenticate(client)
        token = sign_request_token(self.creds, uid=auth.uid, user_token=auth.token)

        params = {"groups": self.group_id}
        if cursor == INITIAL_CURSOR:
            params["init"] = 1
            log.info("Initial run: fetching backlog with init=1")
        else:
            params["pos"] = cursor

        try:
            resp = await client.get(
                LIVE_CALLS_URL,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise FeedError(f"Broadcastify request failed: {exc}") from exc

        if resp.status_code >= 400:
            log.error("Broadcastify error response: %s", resp.text[:500])
            raise FeedError(f"Broadcastify API error: HTTP {resp.status_code}")

        try:
            page = FeedPage.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise FeedError("Malformed Broadcastify live-calls payload") from exc

        log.info("Fetched %d calls, new lastPos=%s", len(page.calls), page.last_pos)
        return page
