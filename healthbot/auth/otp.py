"""Mobile one-time passcode issuance and verification."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .. import config
from ..security import mask_mobile
from .crypto import generate_otp, hash_otp, verify_otp
from .repository import User, UserRepository, get_user_repository

LOGGER = logging.getLogger(__name__)

OtpSender = Callable[[User, str], None]


def log_only_sender(user: User, otp: str) -> None:
    """Stand-in delivery channel: SMS delivery is handled outside this service."""
    LOGGER.info("OTP issued for user %s (%s)", user.id, mask_mobile(user.mobile))


@dataclass
class OtpCheck:
    ok: bool
    error_code: Optional[str] = None
    message: str = ""


class OtpService:
    def __init__(
        self,
        repository: UserRepository,
        *,
        sender: OtpSender = log_only_sender,
        validity: timedelta = timedelta(minutes=config.MOBILE_OTP_VERIFICATION_MINUTES),
        max_attempts: int = config.MOBILE_OTP_MAX_ATTEMPTS,
    ) -> None:
        self._repository = repository
        self._sender = sender
        self._validity = validity
        self._max_attempts = max(1, max_attempts)

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def issue(self, user: User) -> str:
        otp = generate_otp()
        self._repository.save_otp(user.id, hash_otp(otp))
        self._sender(user, otp)
        return otp

    def verify(self, user_id: int, otp: str) -> OtpCheck:
        latest = self._repository.get_latest_otp(user_id)
        if latest is None:
            return OtpCheck(False, "OTP_NOT_FOUND", "No OTP found. Please request a new OTP.")
        if not verify_otp(otp.strip(), latest.otp_hash):
            attempts = self._repository.record_failed_otp_attempt(latest.id)
            LOGGER.warning("Wrong OTP provided for user %s (attempt %s)", user_id, attempts)
            if attempts >= self._max_attempts:
                # Burned: the caller has to request a fresh code.
                self._repository.consume_otp(latest.id)
                return OtpCheck(
                    False, "OTP_ATTEMPTS_EXCEEDED", "Too many invalid attempts. Please request a new OTP."
                )
            return OtpCheck(False, "WRONG_OTP", "Invalid OTP. Please check and try again.")
        if self._now() > latest.created_at + self._validity:
            LOGGER.warning("Expired OTP provided for user %s", user_id)
            return OtpCheck(False, "OTP_EXPIRED", "OTP has expired. Please request a new OTP.")
        if not self._repository.consume_otp(latest.id):
            return OtpCheck(False, "OTP_NOT_FOUND", "No OTP found. Please request a new OTP.")
        return OtpCheck(True)


_OTP_SERVICE: Optional[OtpService] = None


def get_otp_service() -> OtpService:
    global _OTP_SERVICE
    if _OTP_SERVICE is None:
        _OTP_SERVICE = OtpService(get_user_repository())
    return _OTP_SERVICE
