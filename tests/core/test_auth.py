"""
Tests for `core/auth.py` - verification of local staff session tokens.
"""

import pytest

from core.auth import verify_local_token
from core.errors import StaffAuthError

SECRET = "test-secret-for-staff-sessions-0123456789"
ROLES = ["ADMIN", "SUPER_ADMIN"]


def test_valid_admin_token(staff_token):
    principal = verify_local_token(staff_token(role="SUPER_ADMIN", sub="u-42"), SECRET, ROLES)
    assert principal.user_id == "u-42"
    assert principal.role == "SUPER_ADMIN"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"expires_in": -10},
        {"issuer": "firebase"},
        {"secret": "another-secret-that-is-long-enough-000"},
    ],
)
def test_rejected_tokens_are_401(staff_token, kwargs):
    with pytest.raises(StaffAuthError) as exc_info:
        verify_local_token(staff_token(**kwargs), SECRET, ROLES)
    assert exc_info.value.status_code == 401


def test_garbage_token_is_401():
    with pytest.raises(StaffAuthError) as exc_info:
        verify_local_token("not-a-jwt", SECRET, ROLES)
    assert exc_info.value.status_code == 401


def test_wrong_role_is_403(staff_token):
    with pytest.raises(StaffAuthError) as exc_info:
        verify_local_token(staff_token(role="GUEST"), SECRET, ROLES)
    assert exc_info.value.status_code == 403


def test_missing_secret_disables_staff_auth(staff_token):
    with pytest.raises(StaffAuthError) as exc_info:
        verify_local_token(staff_token(), None, ROLES)
    assert exc_info.value.status_code == 401
