from datetime import timedelta

import pytest
from fastapi import HTTPException

from app.core.auth import decode_token, is_admin


def test_decode_token_returns_user(token_factory):
    user = decode_token(token_factory(sub="u-1", email="a@example.com", roles=["Editor"]))
    assert user == {"id": "u-1", "email": "a@example.com", "name": None, "roles": ["editor"]}


def test_decode_token_rejects_expired(token_factory):
    with pytest.raises(HTTPException) as exc:
        decode_token(token_factory(expires_in=timedelta(hours=-1)))
    assert exc.value.status_code == 401


def test_decode_token_rejects_garbage():
    with pytest.raises(HTTPException) as exc:
        decode_token("invalid.jwt.token")
    assert exc.value.status_code == 401


def test_is_admin_by_role_or_allowlist(monkeypatch):
    monkeypatch.setenv("ADMIN_EMAILS", "Chief@Example.com, other@example.com")
    assert is_admin({"roles": ["admin"]})
    assert is_admin({"roles": [], "email": "chief@example.com"})
    assert not is_admin({"roles": ["author"], "email": "reader@example.com"})
    assert not is_admin({"roles": []})
