"""
SQLite 연결 문자열 모듈

writer/reader 핸들이 공유하는 연결 문자열을 생성하고 파싱합니다.

    file:app.db?_busy_timeout=5000&_cache_size=1000000000&_foreign_keys=true
        &_journal_mode=WAL&_synchronous=NORMAL&_txlock=immediate

sqlite3는 '_' 파라미터를 이해하지 못하므로, 연결 시에는 sqlite3 URI와
연결마다 적용할 PRAGMA 목록으로 변환해서 사용합니다.
"""

import uuid
from pathlib import Path
from urllib.parse import parse_qsl, quote, urlencode

from pydantic import ValidationError

from fastdb.config import SqliteOptions
from fastdb.exception import ConnectionStringError

SCHEME = "file:"
MEMORY_FILENAMES = ("", ":memory:")

# 연결 문자열 파라미터 -> SqliteOptions 필드
PARAMS = {
    "_txlock": "txlock",
    "_journal_mode": "journal_mode",
    "_busy_timeout": "busy_timeout",
    "_synchronous": "synchronous",
    "_cache_size": "cache_size",
    "_foreign_keys": "foreign_keys",
}


class ConnectionString:
    """파일 경로 + SQLite 옵션으로 구성된 연결 문자열"""

    def __init__(self, filename: str | Path, options: SqliteOptions | None = None):
        self._filename = str(filename)
        self._options = options or SqliteOptions()
        # 인메모리 DB는 이름 있는 shared-cache DB로 열어 두 핸들이 같은 내용을 보게 함
        self._memory_name = f"fastdb-{uuid.uuid4().hex}" if self.is_memory else None

    @classmethod
    def parse(cls, connection_string: str) -> "ConnectionString":
        """문자열 형태의 연결 문자열 파싱"""
        if not connection_string.startswith(SCHEME):
            raise ConnectionStringError(
                connection_string, f"Connection string must start with '{SCHEME}'"
            )

        filename, _, query = connection_string[len(SCHEME):].partition("?")

        values = {}
        for key, value in parse_qsl(query, keep_blank_values=True):
            if key not in PARAMS:
                raise ConnectionStringError(
                    connection_string, f"Unsupported connection parameter: {key}"
                )
            values[PARAMS[key]] = value

        try:
            options = SqliteOptions(**values)
        except ValidationError as e:
            raise ConnectionStringError(connection_string, str(e)) from e

        return cls(filename, options)

    @property
    def filename(self) -> str:
        return self._filename

    @property
    def options(self) -> SqliteOptions:
        return self._options

    @property
    def is_memory(self) -> bool:
        return self._filename in MEMORY_FILENAMES

    @property
    def sqlite_uri(self) -> str:
        """sqlite3.connect(uri=True)에 전달할 URI"""
        if self.is_memory:
            return f"{SCHEME}{self._memory_name}?mode=memory&cache=shared"
        return SCHEME + quote(self._filename)

    @property
    def begin_statement(self) -> str:
        """읽기/쓰기 트랜잭션 시작 구문 (_txlock)"""
        return f"BEGIN {self._options.txlock.upper()}"

    def pragmas(self) -> list[str]:
        """새 연결마다 적용할 PRAGMA 목록"""
        o = self._options
        # busy_timeout을 먼저 걸어야 journal_mode 전환이 잠금을 기다림
        return [
            f"busy_timeout = {o.busy_timeout}",
            f"journal_mode = {o.journal_mode}",
            f"synchronous = {o.synchronous}",
            f"cache_size = {o.cache_size}",
            f"foreign_keys = {'ON' if o.foreign_keys else 'OFF'}",
        ]

    def params(self) -> dict[str, str]:
        o = self._options
        return {
            "_txlock": o.txlock,
            "_journal_mode": o.journal_mode,
            "_busy_timeout": str(o.busy_timeout),
            "_synchronous": o.synchronous,
            "_cache_size": str(o.cache_size),
            "_foreign_keys": "true" if o.foreign_keys else "false",
        }

    def __str__(self) -> str:
        return f"{SCHEME}{self._filename}?" + urlencode(sorted(self.params().items()))

    def __repr__(self) -> str:
        return f"ConnectionString({str(self)!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConnectionString):
            return NotImplemented
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(str(self))
