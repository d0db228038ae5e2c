"""OAuth providers used for Google and Facebook social login."""

from urllib.parse import urlencode

import httpx
from fastapi import HTTPException, status

from ruwwad.core import config


class OAuthProvider:
    """Authorization-code flow against one identity provider."""

    name = ""
    authorize_url = ""
    token_url = ""
    profile_url = ""
    scope = ""

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorization_params(self, state: str | None) -> dict:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scope,
        }
        if state:
            params["state"] = state
        return params

    def get_authorization_url(self, state: str | None = None) -> str:
        return f"{self.authorize_url}?{urlencode(self.authorization_params(state))}"

    async def exchange_code(self, code: str) -> dict:
        async with httpx.AsyncClient(timeout=10) as client:
            response = await client.post(
                self.token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                    "redirect_uri": self.redirect_uri,
                    "grant_type": "authorization_code",
                },
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            return response.json()

    async def fetch_profile(self, access_token: str) -> dict:
        async with httpx.AsyncClient(timeout=10) as client:
            response = await client.get(
                self.profile_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            response.raise_for_status()
            return response.json()

    def normalize_profile(self, profile: dict) -> dict:
        raise NotImplementedError

    async def get_profile(self, access_token: str) -> dict:
        return self.normalize_profile(await self.fetch_profile(access_token))


class GoogleOAuthProvider(OAuthProvider):
    name = "google"
    authorize_url = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url = "https://oauth2.googleapis.com/token"
    profile_url = "https://www.googleapis.com/oauth2/v2/userinfo"
    scope = "openid email profile"

    def authorization_params(self, state: str | None) -> dict:
        params = super().authorization_params(state)
        params["access_type"] = "offline"
        params["prompt"] = "select_account"
        return params

    def normalize_profile(self, profile: dict) -> dict:
        return {
            "subject": str(profile.get("id", "")),
            "email": (profile.get("email") or "").strip().lower(),
            "first_name": profile.get("given_name") or "",
            "last_name": profile.get("family_name") or "",
            "picture": profile.get("picture"),
            "email_verified": bool(profile.get("verified_email", False)),
        }


class FacebookOAuthProvider(OAuthProvider):
    name = "facebook"
    authorize_url = "https://www.facebook.com/v18.0/dialog/oauth"
    token_url = "https://graph.facebook.com/v18.0/oauth/access_token"
    profile_url = "https://graph.facebook.com/me"
    scope = "email,public_profile"

    async def fetch_profile(self, access_token: str) -> dict:
        async with httpx.AsyncClient(timeout=10) as client:
            response = await client.get(
                self.profile_url,
                params={"fields": "id,email,first_name,last_name,picture", "access_token": access_token},
            )
            response.raise_for_status()
            return response.json()

    def normalize_profile(self, profile: dict) -> dict:
        picture = (profile.get("picture") or {}).get("data") or {}
        return {
            "subject": str(profile.get("id", "")),
            "email": (profile.get("email") or "").strip().lower(),
            "first_name": profile.get("first_name") or "",
            "last_name": profile.get("last_name") or "",
            "picture": picture.get("url"),
            # Facebook only returns confirmed addresses
            "email_verified": bool(profile.get("email")),
        }


def get_provider(name: str) -> OAuthProvider:
    normalized = (name or "").strip().lower()
    if normalized == "google":
        provider = GoogleOAuthProvider(
            config.GOOGLE_CLIENT_ID, config.GOOGLE_CLIENT_SECRET, config.GOOGLE_REDIRECT_URI
        )
    elif normalized == "facebook":
        provider = FacebookOAuthProvider(
            config.FACEBOOK_CLIENT_ID, config.FACEBOOK_CLIENT_SECRET, config.FACEBOOK_REDIRECT_URI
        )
    else:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown OAuth provider")

    if not provider.is_configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{provider.name.title()} login is not configured",
        )
    return provider
