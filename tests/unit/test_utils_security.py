from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException

from marketplace.utils import security

def test_extract_token_prefers_bearer():
    headers = {"Authorization": "Bearer abc"}
    assert security.extract_token(headers, {"sb_access": "cookie"}) == "abc"
    assert security.extract_token({}, {"sb_access": "cookie"}) == "cookie"
    assert security.extract_token({}, {}, {"token": "q"}) == "q"
    assert security.extract_token({}, {}) is None

def test_get_user_from_token_normalizes_supabase_user(monkeypatch):
    client = MagicMock()
    client.auth.get_user.return_value = SimpleNamespace(
        user=SimpleNamespace(id="u1", email="u1@example.com", user_metadata={"role": "Developer"})
    )
    monkeypatch.setattr(security, "get_supabase", lambda: client)
    user = security.get_user_from_token("tok")
    assert user == {"id": "u1", "email": "u1@example.com", "role": "developer", "token": "tok"}

def test_resolve_user_without_token():
    with pytest.raises(HTTPException) as exc:
        security.resolve_user(None)
    assert exc.value.status_code == 401

def test_resolve_user_with_rejected_token(monkeypatch):
    def boom(token):
        raise RuntimeError("invalid JWT")
    monkeypatch.setattr(security, "get_user_from_token", boom)
    with pytest.raises(HTTPException) as exc:
        security.resolve_user("bad")
    assert exc.value.status_code == 401

def test_resolve_user_without_id(monkeypatch):
    monkeypatch.setattr(security, "get_user_from_token", lambda t: {"id": None})
    with pytest.raises(HTTPException):
        security.resolve_user("tok")
