"""
fastdb - SQLite writer/reader 핸들 쌍

사용 예시:
    from fastdb import FastDB, Time

    db = await FastDB.open('data/app.db')

    # 쓰기는 writer (연결 1개로 직렬화)
    async with db.writer.transaction() as ctx:
        await ctx.execute("INSERT INTO events (created_at) VALUES (?)", (Time.now(),))

    # 조회는 reader (병렬)
    rows = await db.reader.fetch_all("SELECT * FROM events")

    await db.close()
"""

from fastdb.common.logging import setup_logging
from fastdb.config import FastDBConfig, LoggingConfig, PoolConfig, SqliteOptions, load_config
from fastdb.connection import (
    AsyncConnectionPool,
    Handle,
    ManagedTransaction,
    PooledConnection,
    TransactionContext,
)
from fastdb.database import FastDB
from fastdb.dsn import ConnectionString
from fastdb.exception import (
    ConnectionPoolExhaustedError,
    ConnectionStringError,
    FastDBError,
    HandleClosedError,
    OpenError,
    ReadOnlyTransactionError,
    TimeDecodeError,
)
from fastdb.timestamp import Time

__all__ = [
    'FastDB',
    'Handle',
    'AsyncConnectionPool',
    'TransactionContext',
    'ManagedTransaction',
    'PooledConnection',
    'ConnectionString',
    'FastDBConfig',
    'PoolConfig',
    'SqliteOptions',
    'LoggingConfig',
    'load_config',
    'setup_logging',
    'Time',
    'FastDBError',
    'OpenError',
    'ConnectionStringError',
    'ConnectionPoolExhaustedError',
    'HandleClosedError',
    'ReadOnlyTransactionError',
    'TimeDecodeError',
]
