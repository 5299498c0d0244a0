"""
Phone OTP Login

Codes are numeric, single use and expire after ``otp_ttl_minutes``.
Delivery goes through the SMS notification channel; in development the
mock service only logs the message, so the code shows up in the console.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from crustops.core.config import get_settings
from crustops.models import OtpCode, User

logger = logging.getLogger(__name__)


def utc_now_naive() -> datetime:
    """Current UTC time without tzinfo, matching the otp_codes.expires_at column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_code(length: int = 6) -> str:
    """Random numeric code of ``length`` digits with no leading zero."""
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


async def issue_code(db: AsyncSession, phone: str) -> OtpCode:
    """Create and store a fresh login code for a phone number."""
    settings = get_settings()

    otp = OtpCode(
        phone=phone,
        code=generate_code(settings.otp_length),
        expires_at=utc_now_naive() + timedelta(minutes=settings.otp_ttl_minutes),
    )
    db.add(otp)
    await db.commit()
    await db.refresh(otp)

    logger.info(f"OTP issued for {phone} (expires {otp.expires_at:%H:%M:%S} UTC)")
    return otp


async def get_valid_code(db: AsyncSession, phone: str, code: str) -> Optional[OtpCode]:
    result = await db.execute(
        select(OtpCode)
        .where(
            OtpCode.phone == phone,
            OtpCode.code == code,
            OtpCode.expires_at > utc_now_naive(),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def purge_expired_codes(db: AsyncSession) -> int:
    """Delete expired codes. Returns the number of rows removed."""
    result = await db.execute(delete(OtpCode).where(OtpCode.expires_at <= utc_now_naive()))
    await db.commit()
    return result.rowcount or 0


async def verify_and_login(db: AsyncSession, phone: str, code: str) -> Optional[User]:
    """
    Consume a login code and return the matching user.

    The user is created on first login. Returns None when the code is
    unknown, already used, or expired.
    """
    otp = await get_valid_code(db, phone, code)
    if otp is None:
        logger.info(f"OTP rejected for {phone}")
        return None

    await db.delete(otp)

    result = await db.execute(select(User).where(User.phone == phone))
    user = result.scalar_one_or_none()

    if user is None:
        user = User(phone=phone, name=get_settings().default_user_name, email="")
        db.add(user)
        logger.info(f"New user created for {phone}")

    await db.commit()
    await db.refresh(user)
    return user
