from datetime import timedelta

import jwt
import pytest

from chatsync.utils.security import create_access_token, decode_access_token


def test_token_round_trip():
    token = create_access_token("alice")

    assert decode_access_token(token)["sub"] == "alice"


def test_expired_token_is_rejected():
    token = create_access_token("alice", expires_in=timedelta(seconds=-5))

    with pytest.raises(jwt.ExpiredSignatureError):
        decode_access_token(token)


def test_tampered_token_is_rejected():
    token = create_access_token("alice")

    with pytest.raises(jwt.PyJWTError):
        decode_access_token(token[:-2] + ("aa" if not token.endswith("aa") else "bb"))
