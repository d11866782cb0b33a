"""
Google OAuth 2.0 client.

Docs: https://developers.google.com/identity/protocols/oauth2/web-server
"""
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from src.core.models import SessionTokens, SessionUser
from src.data_sources.base import BaseDataSource
from src.utils.exceptions import DataSourceError

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
OAUTH_SCOPE = "openid email profile"


class GoogleOAuthClient(BaseDataSource):
    """Authorization-code flow: consent URL, code exchange, userinfo."""

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: str,
        timeout: float = 10.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        super().__init__(
            name="google",
            base_url="https://oauth2.googleapis.com",
            timeout=timeout,
            requires_api_key=True,
        )

    def _get_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    async def fetch_raw(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict] = None,
        json_body: Optional[Dict] = None,
        form_body: Optional[Dict] = None,
    ) -> Any:
        params = dict(params or {})
        access_token = params.pop("access_token", None)
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
        return await self._make_request(
            method, endpoint, params=params, headers=headers, form_body=form_body
        )

    def authorization_url(self, state: str) -> str:
        """Consent screen URL; state carries the caller's session id."""
        query = urlencode(
            {
                "client_id": self.client_id or "",
                "redirect_uri": self.redirect_uri,
                "response_type": "code",
                "scope": OAUTH_SCOPE,
                "state": state,
                "access_type": "offline",
                "prompt": "consent",
            }
        )
        return f"{AUTHORIZE_URL}?{query}"

    async def exchange_code(self, code: str, now_ms: int) -> SessionTokens:
        """Exchange an authorization code; expiry converted to epoch ms."""
        data = await self.fetch(
            TOKEN_URL,
            method="POST",
            form_body={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
            retry=False,
        )
        if "access_token" not in data:
            raise DataSourceError(self.name, "Token response has no access_token")
        return SessionTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            id_token=data.get("id_token"),
            expires_at=now_ms + int(data.get("expires_in", 3600)) * 1000,
        )

    async def get_user_info(self, access_token: str) -> SessionUser:
        data = await self.fetch(USERINFO_URL, params={"access_token": access_token})
        if "sub" not in data:
            raise DataSourceError(self.name, "Userinfo response has no subject")
        return SessionUser(
            id=data["sub"],
            email=data.get("email"),
            name=data.get("name"),
            picture=data.get("picture"),
        )
