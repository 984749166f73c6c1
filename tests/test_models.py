"""Tests for model validation."""

from datetime import datetime, timedelta, UTC
from uuid import uuid4

import pytest
from pydantic import ValidationError

from truename.models.consent import Consent, ConsentActionRequest, ConsentStatus
from truename.models.context import ContextCreate
from truename.models.name import NameCreate, NameKind
from truename.models.oauth import (
    AuthorizeRequest,
    ClientRegistration,
    is_valid_client_id,
    is_valid_return_url,
    is_valid_session_token,
)


class TestIdentifierFormats:
    """Client ids, tokens and return URLs."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("tnp_0123456789abcdef", True),
            ("tnp_0123456789ABCDEF", False),
            ("tnp_0123456789abcde", False),
            ("xyz_0123456789abcdef", False),
        ],
    )
    def test_client_id(self, value, expected):
        assert is_valid_client_id(value) is expected

    def test_session_token(self):
        assert is_valid_session_token("tnp_" + "0a" * 16)
        assert not is_valid_session_token("tnp_" + "0a" * 15)
        assert not is_valid_session_token("0a" * 18)

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://app.example.com/callback", True),
            ("http://localhost:3000/callback", True),
            ("http://127.0.0.1/cb?x=1", True),
            ("http://app.example.com/callback", False),
            ("ftp://app.example.com/", False),
            ("not a url", False),
            ("https://", False),
        ],
    )
    def test_return_url(self, url, expected):
        assert is_valid_return_url(url) is expected


class TestAuthorizeRequest:
    """Input validation for Authorize."""

    def test_valid(self):
        request = AuthorizeRequest(
            client_id="tnp_0123456789abcdef",
            context_id=uuid4(),
            return_url="http://localhost:5173/callback",
            state="abc",
        )

        assert request.state == "abc"

    def test_bad_client_id(self):
        with pytest.raises(ValidationError):
            AuthorizeRequest(
                client_id="client-1",
                context_id=uuid4(),
                return_url="https://app.example.com/cb",
            )

    def test_plain_http_rejected(self):
        with pytest.raises(ValidationError):
            AuthorizeRequest(
                client_id="tnp_0123456789abcdef",
                context_id=uuid4(),
                return_url="http://app.example.com/cb",
            )

    def test_state_length(self):
        with pytest.raises(ValidationError):
            AuthorizeRequest(
                client_id="tnp_0123456789abcdef",
                context_id=uuid4(),
                return_url="https://app.example.com/cb",
                state="s" * 256,
            )


class TestCreateModels:
    """Trimming and bounds on user-entered text."""

    def test_name_text_trimmed(self):
        assert NameCreate(text="  JJ ", kind=NameKind.NICKNAME).text == "JJ"

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            NameCreate(text="   ", kind=NameKind.LEGAL)

    def test_long_context_name_rejected(self):
        with pytest.raises(ValidationError):
            ContextCreate(name="x" * 101)

    def test_client_registration(self):
        reg = ClientRegistration(
            app_name="demo-chat", display_name=" Demo ", publisher_domain="Example.com"
        )

        assert reg.display_name == "Demo"
        assert reg.publisher_domain == "example.com"

    @pytest.mark.parametrize("app_name", ["Demo", "demo_chat", "demo chat"])
    def test_bad_app_name(self, app_name):
        with pytest.raises(ValidationError):
            ClientRegistration(
                app_name=app_name, display_name="Demo", publisher_domain="example.com"
            )


class TestConsentStatus:
    """Effective status with lazy expiry."""

    def test_live_consent_past_expiry_is_expired(self):
        now = datetime.now(UTC)
        consent = Consent(
            granter_id=uuid4(),
            requester_id=uuid4(),
            context_id=uuid4(),
            status=ConsentStatus.GRANTED,
            expires_at=now - timedelta(seconds=1),
        )

        assert consent.effective_status(now) == ConsentStatus.EXPIRED

    def test_revoked_stays_revoked(self):
        now = datetime.now(UTC)
        consent = Consent(
            granter_id=uuid4(),
            requester_id=uuid4(),
            context_id=uuid4(),
            status=ConsentStatus.REVOKED,
            expires_at=now - timedelta(seconds=1),
        )

        assert consent.effective_status(now) == ConsentStatus.REVOKED
        assert not consent.is_live

    def test_no_expiry(self):
        consent = Consent(granter_id=uuid4(), requester_id=uuid4(), context_id=uuid4())

        assert consent.effective_status(datetime.now(UTC)) == ConsentStatus.PENDING

    def test_naive_expiry_rejected(self):
        with pytest.raises(ValidationError):
            ConsentActionRequest(
                action="request",
                target_user_id=uuid4(),
                context_id=uuid4(),
                expires_at="2099-01-01T00:00:00",
            )

    def test_offset_expiry_accepted(self):
        request = ConsentActionRequest(
            action="request",
            target_user_id=uuid4(),
            context_id=uuid4(),
            expires_at="2099-01-01T00:00:00+02:00",
        )

        assert request.expires_at.utcoffset() == timedelta(hours=2)
