"""
writer/reader 핸들 쌍 모듈

하나의 SQLite 파일을 두 개의 커넥션풀로 엽니다.
- writer: 물리 연결 1개. 모든 쓰기가 하나의 연결로 직렬화됨
- reader: 물리 연결 max(4, CPU 코어 수)개. WAL 모드에서 쓰기와 병렬로 조회
"""

import logging
from pathlib import Path

from fastdb.config import FastDBConfig
from fastdb.connection import Handle
from fastdb.dsn import ConnectionString
from fastdb.exception import OpenError

logger = logging.getLogger(__name__)


class FastDB:
    """
    SQLite writer/reader 핸들 쌍

    사용 예시:
        db = await FastDB.open('data/app.db')

        async with db.writer.transaction() as ctx:
            await ctx.execute("INSERT INTO ...")

        async with db.reader.transaction() as ctx:
            rows = await ctx.fetch_all("SELECT ...")

        await db.close()
    """

    def __init__(self, connection_string: ConnectionString, writer: Handle, reader: Handle):
        self._connection_string = connection_string
        self._writer = writer
        self._reader = reader

    @classmethod
    async def open(cls, filename: str | Path, config: FastDBConfig | None = None) -> 'FastDB':
        """
        filename의 SQLite 데이터베이스를 writer/reader 핸들 쌍으로 열기

        Args:
            filename: DB 파일 경로 (':memory:' 또는 ''이면 인메모리 DB)
            config: 풀/옵션 설정 (None이면 기본 정책)

        Raises:
            OpenError: 어느 한쪽 핸들이라도 열지 못한 경우 (열린 writer는 닫힘)
        """
        config = config or FastDBConfig()
        connection_string = ConnectionString(filename, config.options)

        try:
            writer = await Handle.create('writer', connection_string, config.writer)
        except Exception as e:
            raise OpenError(str(filename), f"Failed to open writer for {filename}: {e}") from e

        try:
            reader = await Handle.create('reader', connection_string, config.reader, readonly=True)
        except Exception as e:
            try:
                await writer.close()
            except Exception as close_error:
                logger.error(f"Error closing writer after failed open: {close_error}")
            raise OpenError(str(filename), f"Failed to open reader for {filename}: {e}") from e

        logger.info(
            f"FastDB opened: {filename} "
            f"(writer={writer.pool.max_size}, reader={reader.pool.max_size})",
            extra={"database": str(filename)},
        )
        return cls(connection_string, writer, reader)

    @property
    def writer(self) -> Handle:
        """읽기/쓰기 핸들 (연결 1개)"""
        return self._writer

    @property
    def reader(self) -> Handle:
        """읽기 전용 핸들 (병렬 조회)"""
        return self._reader

    @property
    def connection_string(self) -> ConnectionString:
        return self._connection_string

    @property
    def closed(self) -> bool:
        return self._writer.closed and self._reader.closed

    async def close(self) -> None:
        """writer, reader 순서로 모두 닫고 첫 번째 오류를 다시 발생"""
        first_error: Exception | None = None
        for handle in (self._writer, self._reader):
            try:
                await handle.close()
            except Exception as e:
                logger.error(f"Error closing {handle.name}: {e}")
                if first_error is None:
                    first_error = e

        if first_error is not None:
            raise first_error
        logger.info(
            f"FastDB closed: {self._connection_string.filename}",
            extra={"database": self._connection_string.filename},
        )

    async def __aenter__(self) -> 'FastDB':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
