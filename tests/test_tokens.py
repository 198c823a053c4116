"""Tests for access-token claim decoding."""

from __future__ import annotations

import time

import pytest

from conftest import make_token
from vocalize.common.errors import ErrorKind, VocalizeError
from vocalize.common.tokens import decode_claims, is_token_valid


def test_decode_claims_reads_sub_role_and_exp() -> None:
    token = make_token("42", "user", exp_offset=600, email="ana@example.org")

    claims = decode_claims(token)

    assert claims.sub == "42"
    assert claims.role == "user"
    assert claims.email == "ana@example.org"
    assert claims.exp > time.time()


def test_numeric_sub_is_read_as_string() -> None:
    assert decode_claims(make_token(sub=7)).sub == "7"


@pytest.mark.parametrize("token", ["", "abc", "a.b", "a.!!!.c", "a.bm90IGpzb24.c"])
def test_malformed_tokens_are_rejected(token: str) -> None:
    with pytest.raises(VocalizeError) as exc:
        decode_claims(token)

    assert exc.value.kind is ErrorKind.SERVER_REJECTED


def test_missing_claims_are_rejected() -> None:
    with pytest.raises(VocalizeError) as exc:
        decode_claims(make_token(role=None))

    assert exc.value.message == "Access token is missing required claims"


def test_validity_is_strictly_before_exp() -> None:
    token = make_token(exp_offset=0)
    exp = decode_claims(token).exp

    assert is_token_valid(token, now=exp - 1)
    assert not is_token_valid(token, now=exp)
    assert not is_token_valid(make_token(exp_offset=-5))


def test_undecodable_or_missing_token_counts_as_expired() -> None:
    assert not is_token_valid(None)
    assert not is_token_valid("garbage")
