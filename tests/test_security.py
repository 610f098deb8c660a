"""Tests for caller authentication."""
import pytest

from coursepay.core.exceptions import UnauthenticatedError
from coursepay.core.security import Role, authenticate, create_access_token, decode_access_token


class TestRoleParsing:
    def test_case_insensitive(self):
        assert Role.parse("ADMIN") == Role.ADMIN
        assert Role.parse("educator") == Role.EDUCATOR

    def test_unknown_role_falls_back_to_user(self):
        assert Role.parse("superuser") == Role.USER
        assert Role.parse(None) == Role.USER


def test_local_token_round_trip():
    token = create_access_token("educator_7", Role.EDUCATOR, email="e7@example.com", name="Eve")
    user = decode_access_token(token)

    assert user.id == "educator_7"
    assert user.is_educator
    assert not user.is_admin
    assert user.email == "e7@example.com"


def test_expired_token_rejected():
    token = create_access_token("student_1", Role.STUDENT, expires_minutes=-1)
    assert decode_access_token(token) is None


@pytest.mark.asyncio
async def test_authenticate_rejects_garbage():
    with pytest.raises(UnauthenticatedError):
        await authenticate("not-a-jwt")
