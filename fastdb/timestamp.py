"""
Time 값 타입

타임스탬프를 SQLite INTEGER(epoch 밀리초)로 저장합니다.
정수 규약 이전에 RFC3339 텍스트로 저장된 행도 읽을 수 있지만,
쓰기는 항상 정수로만 합니다. 마이그레이션 없이 새 데이터가 정수 형식으로 수렴합니다.

EPOCHMS로 선언된 컬럼은 읽을 때 자동으로 Time으로 변환됩니다:
    CREATE TABLE events (id INTEGER PRIMARY KEY, created_at EPOCHMS NOT NULL)

sqlite3 변환기는 저장 타입(storage class) 없이 값의 바이트만 받습니다.
- INTEGER와 REAL은 숫자 표기로 구분합니다. REAL은 float 타입 오류로 실패합니다.
- BLOB은 같은 바이트의 TEXT/INTEGER와 구분할 수 없습니다. 숫자 바이트의 BLOB은
  정수로, UTF-8 바이트는 텍스트로 해석되며, 그 외의 BLOB만 bytes 타입 오류가 됩니다.
  저장 타입까지 검사하려면 typeof(컬럼)을 함께 조회해 Time.scan을 직접 호출합니다.
"""

import re
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any

from fastdb.exception import TimeDecodeError

DECLTYPE = "EPOCHMS"
INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_RFC3339 = re.compile(
    r"([0-9]{4})-([0-9]{2})-([0-9]{2})[Tt]([0-9]{2}):([0-9]{2}):([0-9]{2})"
    r"(?:\.([0-9]+))?"
    r"(?:([Zz])|([+-])([0-9]{2}):([0-9]{2}))"
)
_INTEGER = re.compile(rb"[+-]?[0-9]+")
# SQLite의 REAL 텍스트 표기 (예: 1.5, 1.0e+20, Inf)
_REAL = re.compile(rb"[+-]?(?:(?:[0-9]+\.[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|Inf)")


def _to_millis(dt: datetime) -> int:
    # timedelta는 days만 음수가 될 수 있으므로 밀리초 미만은 내림
    delta = dt - _EPOCH
    return (delta.days * 86400 + delta.seconds) * 1000 + delta.microseconds // 1000


def parse_rfc3339(text: str) -> int:
    """RFC3339 문자열을 UTC 기준 epoch 밀리초로 변환"""
    m = _RFC3339.fullmatch(text)
    if m is None:
        raise TimeDecodeError(text, f"Time.scan: cannot parse {text!r} as RFC3339")

    year, month, day, hour, minute, second = (int(g) for g in m.group(1, 2, 3, 4, 5, 6))
    fraction = m.group(7)
    microsecond = int(fraction[:6].ljust(6, "0")) if fraction else 0

    if m.group(8):
        tz = timezone.utc
    else:
        offset_hours, offset_minutes = int(m.group(10)), int(m.group(11))
        if offset_hours > 23 or offset_minutes > 59:
            raise TimeDecodeError(text, f"Time.scan: invalid time zone offset in {text!r}")
        offset = timedelta(hours=offset_hours, minutes=offset_minutes)
        tz = timezone(-offset if m.group(9) == "-" else offset)

    try:
        dt = datetime(year, month, day, hour, minute, second, microsecond, tzinfo=tz)
    except ValueError as e:
        raise TimeDecodeError(text, f"Time.scan: cannot parse {text!r} as RFC3339: {e}") from e

    return _to_millis(dt)


class Time(int):
    """epoch 밀리초 타임스탬프 (INTEGER로 저장)"""

    def __new__(cls, millis: int = 0) -> "Time":
        if not isinstance(millis, int) or isinstance(millis, bool):
            raise TypeError(f"Time requires int milliseconds, got {type(millis).__name__}")
        if not INT64_MIN <= millis <= INT64_MAX:
            raise OverflowError(f"Time out of int64 range: {millis}")
        return super().__new__(cls, millis)

    @classmethod
    def scan(cls, value: Any) -> "Time":
        """DB에 저장된 값(INTEGER 또는 RFC3339 TEXT)을 Time으로 변환"""
        if isinstance(value, int) and not isinstance(value, bool):
            if not INT64_MIN <= value <= INT64_MAX:
                raise TimeDecodeError(value, f"Time.scan: integer out of int64 range: {value}")
            return cls(value)
        if isinstance(value, str):
            return cls(parse_rfc3339(value))
        raise TimeDecodeError(value)

    def value(self) -> int:
        """DB에 저장할 값 (항상 정수)"""
        return int(self)

    @classmethod
    def from_datetime(cls, dt: datetime) -> "Time":
        """datetime -> Time (naive datetime은 UTC로 간주)"""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return cls(_to_millis(dt))

    @classmethod
    def now(cls) -> "Time":
        return cls.from_datetime(datetime.now(timezone.utc))

    def to_datetime(self) -> datetime:
        return _EPOCH + timedelta(milliseconds=int(self))

    def __repr__(self) -> str:
        return f"Time({int(self)})"


def _convert(raw: bytes) -> Time:
    """EPOCHMS 컬럼 변환기 (sqlite3는 저장 타입과 무관하게 bytes를 전달)"""
    if _INTEGER.fullmatch(raw):
        return Time.scan(int(raw))
    if _REAL.fullmatch(raw):
        return Time.scan(float(raw))
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise TimeDecodeError(raw) from e
    return Time.scan(text)


def register() -> None:
    """sqlite3 adapter/converter 등록"""
    sqlite3.register_adapter(Time, Time.value)
    sqlite3.register_converter(DECLTYPE, _convert)


register()
