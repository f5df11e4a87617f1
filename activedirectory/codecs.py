"""
Codecs for Active Directory attribute formats that are not plain text.
"""

import datetime

import pytz
from django.utils import timezone


class Timestamp:
    """
    Active Directory timestamps (``lastLogonTimestamp``, ``pwdLastSet``,
    ``accountExpires``, ...) are 18-digit integers counting 100-nanosecond
    intervals since January 1, 1601 UTC, also known as Windows NT time.
    """

    #: The Active Directory epoch (January 1, 1601 UTC).
    AD_EPOCH: datetime.datetime = datetime.datetime(1601, 1, 1, tzinfo=pytz.UTC)
    #: The number of 100-nanosecond intervals per second.
    INTERVALS_PER_SECOND: int = 10_000_000
    #: The number of 100-nanosecond intervals per microsecond.
    INTERVALS_PER_MICROSECOND: int = 10
    #: Values Active Directory uses to mean "never".
    NEVER: tuple[int, ...] = (0, 0x7FFFFFFFFFFFFFFF)
    #: ``decode(encode(t))`` is within this of ``t``.
    RESOLUTION: datetime.timedelta = datetime.timedelta(microseconds=1)

    @classmethod
    def encode(cls, moment: datetime.datetime | datetime.date | float) -> int:
        """
        Convert a moment in time to an Active Directory timestamp.

        Args:
            moment: a datetime (naive datetimes are taken to be UTC), a date
                (midnight UTC), or seconds since the Unix epoch

        Returns:
            The number of 100-nanosecond intervals since the AD epoch.

        """
        if isinstance(moment, (int, float)):
            moment = datetime.datetime.fromtimestamp(moment, tz=pytz.UTC)
        elif not isinstance(moment, datetime.datetime):
            moment = datetime.datetime.combine(moment, datetime.time.min)
        moment = (
            timezone.make_aware(moment, pytz.UTC)
            if timezone.is_naive(moment)
            else moment.astimezone(pytz.UTC)
        )
        # Integer arithmetic: float seconds lose precision this far from 1601
        delta = moment - cls.AD_EPOCH
        return (delta // datetime.timedelta(microseconds=1)) * cls.INTERVALS_PER_MICROSECOND

    @classmethod
    def decode(cls, value: int | str | bytes | None) -> datetime.datetime | None:
        """
        Convert an Active Directory timestamp to an aware UTC datetime.

        Args:
            value: the timestamp, as an integer or as the text LDAP gives us

        Raises:
            ValueError: ``value`` is not an integer

        Returns:
            The datetime, or ``None`` for the "never" values.

        """
        if value is None or value in ("", b""):
            return None
        timestamp = int(value)
        if timestamp in cls.NEVER:
            return None
        try:
            return cls.AD_EPOCH + datetime.timedelta(
                microseconds=timestamp // cls.INTERVALS_PER_MICROSECOND
            )
        except OverflowError:
            # Past datetime.MAXYEAR; AD uses these as "never" too
            return None


class Password:
    """
    Active Directory's ``unicodePwd`` attribute wants the new password
    wrapped in double quotes and encoded as UTF-16-LE.
    """

    @staticmethod
    def encode(password: str) -> bytes:
        """
        Encode a plain text password for ``unicodePwd``.

        Args:
            password: the plain text password

        Returns:
            The AD-formatted password.

        """
        return f'"{password}"'.encode("utf-16-le")

    @staticmethod
    def decode(encoded: bytes | None) -> None:  # noqa: ARG004
        """
        Always ``None``: the directory never gives passwords back.
        """
        return None
