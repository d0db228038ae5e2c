from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import HTTPException

from ruwwad.auth import oauth


def test_get_provider_rejects_unknown_provider() -> None:
    with pytest.raises(HTTPException) as exception_info:
        oauth.get_provider('myspace')

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Unknown OAuth provider'


def test_get_provider_requires_client_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(oauth.config, 'GOOGLE_CLIENT_ID', '')
    monkeypatch.setattr(oauth.config, 'GOOGLE_CLIENT_SECRET', '')

    with pytest.raises(HTTPException) as exception_info:
        oauth.get_provider('Google')

    assert exception_info.value.status_code == 503
    assert exception_info.value.detail == 'Google login is not configured'


def test_google_authorization_url_carries_state() -> None:
    provider = oauth.GoogleOAuthProvider('client-id', 'client-secret', 'http://localhost/callback')

    url = urlparse(provider.get_authorization_url('state-123'))
    params = parse_qs(url.query)

    assert url.netloc == 'accounts.google.com'
    assert params['client_id'] == ['client-id']
    assert params['redirect_uri'] == ['http://localhost/callback']
    assert params['response_type'] == ['code']
    assert params['state'] == ['state-123']


def test_google_profile_is_normalized() -> None:
    provider = oauth.GoogleOAuthProvider('id', 'secret', 'http://localhost/callback')

    profile = provider.normalize_profile(
        {
            'id': 12345,
            'email': ' Sara@Example.COM ',
            'given_name': 'Sara',
            'family_name': 'Khalil',
            'picture': 'https://example.com/p.png',
            'verified_email': True,
        }
    )

    assert profile == {
        'subject': '12345',
        'email': 'sara@example.com',
        'first_name': 'Sara',
        'last_name': 'Khalil',
        'picture': 'https://example.com/p.png',
        'email_verified': True,
    }


def test_facebook_profile_is_normalized_without_email() -> None:
    provider = oauth.FacebookOAuthProvider('id', 'secret', 'http://localhost/callback')

    profile = provider.normalize_profile({'id': '99', 'first_name': 'Omar', 'picture': {'data': {'url': 'pic'}}})

    assert profile['subject'] == '99'
    assert profile['email'] == ''
    assert profile['picture'] == 'pic'
    assert profile['email_verified'] is False
