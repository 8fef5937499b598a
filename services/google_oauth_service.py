"""Google sign-in using the OAuth 2.0 authorization code flow."""

import logging
import secrets
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx

from config import Settings, settings as default_settings
from errors import AuthenticationError, ExternalServiceError
from services.http_client import HTTPClient, get_http_client

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"


@dataclass
class GoogleProfile:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None


class GoogleOAuthClient:
    def __init__(self, settings: Optional[Settings] = None, http_client: Optional[HTTPClient] = None) -> None:
        self.settings = settings or default_settings
        self._http_client = http_client

    @property
    def enabled(self) -> bool:
        return self.settings.google_enabled

    @staticmethod
    def new_state() -> str:
        return secrets.token_urlsafe(24)

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.settings.google_client_id,
            "redirect_uri": self.settings.google_callback_url,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "prompt": "select_account",
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    async def _client(self) -> HTTPClient:
        if self._http_client is None:
            self._http_client = await get_http_client()
        return self._http_client

    async def fetch_profile(self, code: str) -> GoogleProfile:
        """Exchange an authorization code for tokens and load the user's profile."""
        client = await self._client()
        try:
            token_response = await client.post(TOKEN_URL, data={
                "code": code,
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "redirect_uri": self.settings.google_callback_url,
                "grant_type": "authorization_code",
            })
            if token_response.status_code != 200:
                logger.warning("Google token exchange failed with HTTP %d", token_response.status_code)
                raise AuthenticationError("Google sign-in was rejected")
            access_token = token_response.json().get("access_token")
            if not access_token:
                raise AuthenticationError("Google sign-in was rejected")

            info_response = await client.get(USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
            if info_response.status_code != 200:
                raise ExternalServiceError(f"Google userinfo failed with status {info_response.status_code}")
            info = info_response.json()
        except httpx.RequestError as exc:
            raise ExternalServiceError("Google is unreachable") from exc

        if not info.get("sub"):
            raise AuthenticationError("Google profile has no subject")
        return GoogleProfile(
            id=str(info["sub"]),
            email=info.get("email"),
            name=info.get("name"),
            avatar_url=info.get("picture"),
        )
