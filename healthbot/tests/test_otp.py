"""Tests for one-time passcode issuance and verification."""

from __future__ import annotations

from datetime import timedelta

from healthbot.auth.crypto import generate_otp, hash_otp, verify_otp
from healthbot.auth.otp import OtpService


def _service(repository, sent, validity=timedelta(minutes=10), max_attempts=5) -> OtpService:
    return OtpService(
        repository,
        sender=lambda user, otp: sent.append((user.id, otp)),
        validity=validity,
        max_attempts=max_attempts,
    )


def test_generated_otp_is_six_digits():
    otp = generate_otp()
    assert len(otp) == 6
    assert otp.isdigit()


def test_hash_is_not_plaintext_and_verifies():
    digest = hash_otp("123456")
    assert "123456" not in digest
    assert verify_otp("123456", digest)
    assert not verify_otp("654321", digest)
    assert not verify_otp("123456", "not-a-hash")


def test_issue_stores_hash_and_sends_code(repository, make_user):
    user = make_user()
    sent = []

    otp = _service(repository, sent).issue(user)

    assert sent == [(user.id, otp)]
    stored = repository.get_latest_otp(user.id)
    assert stored.otp_hash != otp
    assert verify_otp(otp, stored.otp_hash)


def test_verify_accepts_once(repository, make_user):
    user = make_user()
    service = _service(repository, [])
    otp = service.issue(user)

    assert service.verify(user.id, otp).ok
    replay = service.verify(user.id, otp)
    assert not replay.ok
    assert replay.error_code == "OTP_NOT_FOUND"


def test_verify_rejects_wrong_code(repository, make_user):
    user = make_user()
    service = _service(repository, [])
    otp = service.issue(user)
    wrong = "000000" if otp != "000000" else "111111"

    check = service.verify(user.id, wrong)

    assert not check.ok
    assert check.error_code == "WRONG_OTP"
    assert service.verify(user.id, otp).ok


def test_verify_rejects_expired_code(repository, make_user):
    user = make_user()
    service = _service(repository, [], validity=timedelta(minutes=-1))
    otp = service.issue(user)

    check = service.verify(user.id, otp)

    assert not check.ok
    assert check.error_code == "OTP_EXPIRED"


def test_only_latest_code_counts(repository, make_user):
    user = make_user()
    service = _service(repository, [])
    first = service.issue(user)
    second = service.issue(user)

    if first != second:
        assert service.verify(user.id, first).error_code == "WRONG_OTP"
    assert service.verify(user.id, second).ok


def test_verify_without_any_code(repository, make_user):
    check = _service(repository, []).verify(make_user().id, "123456")
    assert check.error_code == "OTP_NOT_FOUND"


def test_correct_code_refused_after_too_many_wrong_guesses(repository, make_user):
    user = make_user()
    service = _service(repository, [], max_attempts=3)
    otp = service.issue(user)
    wrong = "000000" if otp != "000000" else "111111"

    codes = [service.verify(user.id, wrong).error_code for _ in range(3)]

    assert codes == ["WRONG_OTP", "WRONG_OTP", "OTP_ATTEMPTS_EXCEEDED"]
    late = service.verify(user.id, otp)
    assert not late.ok
    assert late.error_code == "OTP_NOT_FOUND"


def test_failed_attempts_are_counted_per_code(repository, make_user):
    user = make_user()
    service = _service(repository, [], max_attempts=3)
    first = service.issue(user)
    wrong = "000000" if first != "000000" else "111111"
    service.verify(user.id, wrong)
    service.verify(user.id, wrong)
    assert repository.get_latest_otp(user.id).failed_attempts == 2

    second = service.issue(user)

    assert repository.get_latest_otp(user.id).failed_attempts == 0
    assert service.verify(user.id, second).ok
