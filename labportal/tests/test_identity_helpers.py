"""
Pure identity helpers: attribute parsing, domain check, JWT expiry, error remapping.
"""
from __future__ import annotations

import pytest
from jose import jwt

from labportal.errors import (
    ATTEMPT_LIMIT_GUIDANCE,
    QUOTA_GUIDANCE,
    ProviderAttemptLimitExceeded,
    ProviderError,
    ProviderQuotaExceeded,
    remap_provider_error,
)
from labportal.identity_access.domain import email_has_suffix, parse_user_attributes
from labportal.identity_access.tokens import token_expired, unverified_claims

NOW = 1_700_000_000


def test_parse_attributes_full():
    user = parse_user_attributes(
        [
            {"Name": "email", "Value": "a@gatech.edu"},
            {"Name": "custom:role", "Value": "staff"},
            {"Name": "custom:studentId", "Value": "903"},
            {"Name": "custom:fullName", "Value": "Ada L"},
        ]
    )

    assert (user.username, user.role, user.student_id, user.full_name) == ("a@gatech.edu", "staff", "903", "Ada L")
    assert user.is_staff


def test_parse_attributes_defaults():
    user = parse_user_attributes(
        [
            {"Name": "email", "Value": "a@gatech.edu"},
            {"Name": "preferred_username", "Value": "ada"},
            {"Name": "custom:role", "Value": "admin"},
            {"Name": "custom:fullName", "Value": ""},
        ]
    )

    assert user.username == "ada"
    assert user.role == "student"
    assert user.full_name is None


@pytest.mark.parametrize(
    "email, ok",
    [
        ("a@gatech.edu", True),
        (" A@GaTech.EDU ", True),
        ("@gatech.edu", False),
        ("a@gmail.com", False),
        ("a@gatech.edu.evil.com", False),
        ("", False),
    ],
)
def test_email_has_suffix(email, ok):
    assert email_has_suffix(email, "@gatech.edu") is ok


def test_token_expired_reads_exp_claim():
    old = jwt.encode({"exp": NOW - 60}, "k", algorithm="HS256")
    fresh = jwt.encode({"exp": NOW + 60}, "k", algorithm="HS256")
    within_skew = jwt.encode({"exp": NOW - 2}, "k", algorithm="HS256")

    assert token_expired(old, now=NOW) is True
    assert token_expired(fresh, now=NOW) is False
    assert token_expired(within_skew, now=NOW) is False


def test_opaque_tokens_are_not_expired():
    assert unverified_claims("not-a-jwt") is None
    assert token_expired("not-a-jwt", now=NOW) is False
    assert token_expired(jwt.encode({"sub": "x"}, "k", algorithm="HS256"), now=NOW) is False


def test_remap_quota_and_attempt_limit():
    quota = remap_provider_error(ProviderError("LimitExceededException", "Exceeded daily email limit for the operation"))
    attempts = remap_provider_error(ProviderError("LimitExceededException", "Attempt limit exceeded, please try after some time."))

    assert isinstance(quota, ProviderQuotaExceeded) and quota.message == QUOTA_GUIDANCE
    assert isinstance(attempts, ProviderAttemptLimitExceeded) and attempts.message == ATTEMPT_LIMIT_GUIDANCE
    assert quota.provider_message == "Exceeded daily email limit for the operation"


def test_other_provider_errors_pass_through():
    err = ProviderError("CodeMismatchException", "Invalid verification code provided, please try again.")

    assert remap_provider_error(err) is err
