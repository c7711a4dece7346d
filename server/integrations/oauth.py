import logging
import urllib.parse
from dataclasses import dataclass

import httpx
from core.logging_setup import log_step
from fastapi import HTTPException

logger = logging.getLogger(__name__)

LOG_STEP = "INT-OAUTH"

REDIRECT_PATH = "/api/auth/oauth/callback"
STATE_COOKIE_NAME = "oauth_auth_state"


@dataclass
class OAuthProfile:
    open_id: str
    name: str | None = None
    email: str | None = None


class OAuthClient:
    """
    Authorization-code login against an external OpenID Connect provider.
    The provider's `sub` claim becomes the user's `open_id`.
    """

    def __init__(
        self,
        authorize_url: str,
        token_url: str,
        userinfo_url: str,
        client_id: str,
        client_secret: str,
        app_base_url: str,
        scope: str = "openid email profile",
        timeout: float = 30.0,
    ):
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.userinfo_url = userinfo_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self.redirect_uri = f"{app_base_url.rstrip('/')}{REDIRECT_PATH}"
        self.http = httpx.AsyncClient(timeout=timeout)

    def login_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scope,
            "state": state,
        }
        return f"{self.authorize_url}?{urllib.parse.urlencode(params)}"

    async def fetch_profile(self, code: str) -> OAuthProfile:
        """Exchanges the authorization code and reads the user's profile."""
        with log_step(LOG_STEP):
            try:
                token_resp = await self.http.post(
                    self.token_url,
                    data={
                        "code": code,
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "redirect_uri": self.redirect_uri,
                        "grant_type": "authorization_code",
                    },
                )
            except httpx.HTTPError as e:
                logger.error(f"OAuth token request failed: {e}")
                raise HTTPException(status_code=502, detail="Identity provider unavailable.")
            if token_resp.status_code != 200:
                logger.warning(f"OAuth token exchange rejected: {token_resp.status_code}")
                raise HTTPException(status_code=400, detail="Failed to retrieve access token.")

            access_token = token_resp.json().get("access_token")
            if not access_token:
                raise HTTPException(status_code=400, detail="Failed to retrieve access token.")

            try:
                user_resp = await self.http.get(
                    self.userinfo_url, headers={"Authorization": f"Bearer {access_token}"}
                )
            except httpx.HTTPError as e:
                logger.error(f"OAuth userinfo request failed: {e}")
                raise HTTPException(status_code=502, detail="Identity provider unavailable.")
            if user_resp.status_code != 200:
                raise HTTPException(status_code=400, detail="Failed to retrieve user profile.")

            user_info = user_resp.json()
            open_id = user_info.get("sub")
            if not open_id:
                raise HTTPException(status_code=400, detail="User profile has no subject.")

            return OAuthProfile(
                open_id=str(open_id),
                name=user_info.get("name"),
                email=user_info.get("email"),
            )

    async def close(self) -> None:
        await self.http.aclose()
