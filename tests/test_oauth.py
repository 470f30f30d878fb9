"""Unit tests for auth/oauth.py -- redirect state and OIDC claim extraction."""

from __future__ import annotations

import base64

import pytest

from auth.oauth import _get_oidc_user_info, decode_redirect_state, encode_redirect_state

CLIENT = "http://localhost:3000"


class TestRedirectState:
    def test_round_trip(self) -> None:
        state = encode_redirect_state(f"{CLIENT}/dashboard")
        assert decode_redirect_state(state, CLIENT) == f"{CLIENT}/dashboard"

    def test_same_url_gives_unpredictable_states(self) -> None:
        url = f"{CLIENT}/dashboard"
        first, second = encode_redirect_state(url), encode_redirect_state(url)
        assert first != second
        assert first != base64.urlsafe_b64encode(url.encode()).decode()

    def test_no_redirect_leaves_state_to_authlib(self) -> None:
        assert encode_redirect_state(None) is None
        assert encode_redirect_state("") is None
        assert decode_redirect_state(None, CLIENT) == CLIENT

    def test_state_without_nonce_falls_back(self) -> None:
        bare = base64.urlsafe_b64encode(f"{CLIENT}/dashboard".encode()).decode()
        assert decode_redirect_state(bare, CLIENT) == CLIENT

    @pytest.mark.parametrize("target", ["https://evil.example.com", "http://localhost:3000.evil.com/x"])
    def test_foreign_targets_fall_back(self, target: str) -> None:
        assert decode_redirect_state(encode_redirect_state(target), CLIENT) == CLIENT

    def test_garbage_falls_back(self) -> None:
        assert decode_redirect_state("%%%not-base64", CLIENT) == CLIENT


class TestOidcClaims:
    def test_verified_email(self) -> None:
        token = {"userinfo": {"email": "a@example.com", "email_verified": True, "sub": "s1"}}
        assert _get_oidc_user_info(token, "google") == ("a@example.com", "s1")

    @pytest.mark.parametrize(
        "userinfo",
        [
            None,
            {"email": "a@example.com", "sub": "s1"},
            {"email": "a@example.com", "email_verified": False, "sub": "s1"},
            {"email_verified": True, "sub": "s1"},
        ],
    )
    def test_rejected(self, userinfo) -> None:
        with pytest.raises(ValueError):
            _get_oidc_user_info({"userinfo": userinfo}, "google")
