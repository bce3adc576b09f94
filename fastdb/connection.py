"""
SQLite3 비동기 커넥션풀 모듈

aiosqlite를 사용하여 최대 연결 수가 제한된 비동기 SQLite3 커넥션풀을 제공합니다.
물리 연결은 필요할 때 생성되며, 연결마다 연결 문자열의 PRAGMA가 적용됩니다.
"""

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import aiosqlite

from fastdb.config import PoolConfig
from fastdb.dsn import ConnectionString
from fastdb.exception import (
    ConnectionPoolExhaustedError,
    HandleClosedError,
    ReadOnlyTransactionError,
)

logger = logging.getLogger(__name__)


@dataclass
class PooledConnection:
    """풀에서 관리되는 연결"""
    connection: aiosqlite.Connection
    created_at: datetime = field(default_factory=datetime.now)
    last_used_at: datetime = field(default_factory=datetime.now)
    in_use: bool = False


class TransactionContext:
    """SQLite 트랜잭션 컨텍스트 관리 클래스"""

    def __init__(
        self,
        connection: aiosqlite.Connection,
        readonly: bool = False,
        begin_statement: str = "BEGIN IMMEDIATE"
    ):
        self._connection = connection
        self._readonly = readonly
        self._begin_statement = begin_statement
        self._in_transaction = False

    @property
    def connection(self) -> aiosqlite.Connection:
        return self._connection

    @property
    def readonly(self) -> bool:
        return self._readonly

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    async def begin(self) -> None:
        """트랜잭션 시작"""
        if self._in_transaction:
            logger.warning("Transaction already started")
            return
        # 읽기 전용은 query_only로 엔진 수준에서 쓰기를 막고, 첫 조회 시점의 WAL 스냅샷을 사용
        if self._readonly:
            await self._connection.execute("PRAGMA query_only = ON")
            try:
                await self._connection.execute("BEGIN DEFERRED")
            except BaseException:
                await self._connection.execute("PRAGMA query_only = OFF")
                raise
        else:
            await self._connection.execute(self._begin_statement)
        self._in_transaction = True
        logger.debug("Transaction started")

    async def commit(self) -> None:
        """트랜잭션 커밋"""
        if not self._in_transaction:
            logger.warning("No active transaction to commit")
            return
        try:
            await self._connection.commit()
        finally:
            await self._end()
        logger.debug("Transaction committed")

    async def rollback(self) -> None:
        """트랜잭션 롤백"""
        if not self._in_transaction:
            logger.warning("No active transaction to rollback")
            return
        try:
            await self._connection.rollback()
        finally:
            await self._end()
        logger.debug("Transaction rolled back")

    async def _end(self) -> None:
        self._in_transaction = False
        # 풀로 돌아가는 연결은 항상 쓰기 가능 상태
        if self._readonly:
            await self._connection.execute("PRAGMA query_only = OFF")

    async def execute(self, sql: str, parameters: Any = None) -> aiosqlite.Cursor:
        """SQL 실행"""
        if self._readonly and self._is_write_query(sql):
            raise ReadOnlyTransactionError("Cannot execute write query in readonly transaction")

        _log_query(sql, parameters)
        try:
            if parameters:
                cursor = await self._connection.execute(sql, parameters)
            else:
                cursor = await self._connection.execute(sql)
        except sqlite3.OperationalError as e:
            self._raise_if_readonly_violation(e)
            raise
        return cursor

    async def executemany(self, sql: str, parameters: list) -> aiosqlite.Cursor:
        """다중 SQL 실행"""
        if self._readonly and self._is_write_query(sql):
            raise ReadOnlyTransactionError("Cannot execute write query in readonly transaction")

        _log_query(sql, f"[{len(parameters)} rows]")
        try:
            cursor = await self._connection.executemany(sql, parameters)
        except sqlite3.OperationalError as e:
            self._raise_if_readonly_violation(e)
            raise
        return cursor

    async def fetch_one(self, sql: str, parameters: Any = None) -> aiosqlite.Row | None:
        """단일 행 조회"""
        cursor = await self.execute(sql, parameters)
        row = await cursor.fetchone()
        _log_result(1 if row else 0)
        return row

    async def fetch_all(self, sql: str, parameters: Any = None) -> list[aiosqlite.Row]:
        """모든 행 조회"""
        cursor = await self.execute(sql, parameters)
        rows = await cursor.fetchall()
        _log_result(len(rows))
        return rows

    def _is_write_query(self, sql: str) -> bool:
        """쓰기 쿼리인지 확인"""
        sql_upper = sql.strip().upper()
        write_keywords = (
            'INSERT', 'UPDATE', 'DELETE', 'REPLACE', 'CREATE', 'DROP', 'ALTER', 'TRUNCATE'
        )
        return sql_upper.startswith(write_keywords)

    def _raise_if_readonly_violation(self, error: sqlite3.OperationalError) -> None:
        """query_only에 막힌 쓰기를 ReadOnlyTransactionError로 변환"""
        if self._readonly and "readonly database" in str(error):
            raise ReadOnlyTransactionError(
                f"Cannot execute write query in readonly transaction: {error}"
            ) from error


def _log_query(sql: str, parameters: Any = None) -> None:
    """SQL 쿼리 로깅"""
    sql_oneline = ' '.join(sql.split())
    if parameters:
        logger.debug(f"[SQL] {sql_oneline} | params: {parameters}")
    else:
        logger.debug(f"[SQL] {sql_oneline}")


def _log_result(row_count: int) -> None:
    """SQL 결과 로깅"""
    logger.debug(f"[SQL Result] {row_count} row(s)")


class AsyncConnectionPool:
    """비동기 SQLite 커넥션풀 클래스 (최대 pool_size개의 물리 연결)"""

    def __init__(
        self,
        name: str,
        connection_string: ConnectionString,
        pool_config: PoolConfig | None = None
    ):
        self._name = name
        self._connection_string = connection_string
        self._pool_config = pool_config or PoolConfig()

        self._pool: list[PooledConnection] = []
        self._lock = asyncio.Lock()
        self._semaphore: asyncio.Semaphore | None = None
        self._initialized = False
        self._closed = False

        self._cleanup_task: asyncio.Task | None = None

    async def initialize(self) -> None:
        """커넥션풀 초기화 (첫 연결을 열어 파일/PRAGMA 오류를 즉시 드러냄)"""
        if self._initialized:
            logger.warning("Connection pool already initialized")
            return

        self._semaphore = asyncio.Semaphore(self._pool_config.pool_size)

        conn = await self._create_connection()
        self._pool.append(PooledConnection(connection=conn))

        self._initialized = True
        self._cleanup_task = asyncio.create_task(self._cleanup_idle_connections())

        logger.info(
            f"Connection pool '{self._name}' initialized: {self._connection_string} "
            f"(max={self._pool_config.pool_size}, timeout={self._pool_config.pool_timeout}s)",
            extra={"handle": self._name, "max_size": self._pool_config.pool_size},
        )

    async def _create_connection(self) -> aiosqlite.Connection:
        """새로운 SQLite 연결 생성"""
        options = self._connection_string.options
        conn = await aiosqlite.connect(
            self._connection_string.sqlite_uri,
            uri=True,
            timeout=options.busy_timeout / 1000.0,
            isolation_level=None,
            detect_types=sqlite3.PARSE_DECLTYPES,
        )

        try:
            conn.row_factory = aiosqlite.Row
            for pragma in self._connection_string.pragmas() + self._pool_config.pragmas:
                await conn.execute(f"PRAGMA {pragma}")
        except BaseException:
            await conn.close()
            raise

        logger.debug(f"New connection created for '{self._name}' with PRAGMA settings applied")
        return conn

    async def acquire(self, timeout: float | None = None) -> PooledConnection:
        """커넥션풀에서 연결 획득 (모두 사용 중이면 timeout까지 대기)"""
        if not self._initialized:
            raise RuntimeError("Connection pool not initialized. Call initialize() first.")

        if self._closed:
            raise HandleClosedError(self._name)

        if timeout is None:
            timeout = self._pool_config.pool_timeout

        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            raise ConnectionPoolExhaustedError(
                f"Connection pool '{self._name}' exhausted. Timeout after {timeout}s"
            )

        try:
            async with self._lock:
                if self._closed:
                    raise HandleClosedError(self._name)

                for pooled_conn in self._pool:
                    if not pooled_conn.in_use:
                        pooled_conn.in_use = True
                        pooled_conn.last_used_at = datetime.now()
                        return pooled_conn

                # 세마포어가 pool_size를 보장하므로 여기서는 새 연결을 만들 여유가 있음
                conn = await self._create_connection()
                pooled_conn = PooledConnection(connection=conn, in_use=True)
                self._pool.append(pooled_conn)
                return pooled_conn
        except BaseException:
            self._semaphore.release()
            raise

    async def release(self, pooled_conn: PooledConnection) -> None:
        """연결을 풀에 반환"""
        async with self._lock:
            pooled_conn.in_use = False
            pooled_conn.last_used_at = datetime.now()
        self._semaphore.release()
        logger.debug(f"Connection released. In use: {self.in_use}/{self.max_size}")

    async def _cleanup_idle_connections(self) -> None:
        """유휴 연결 정리 (백그라운드 태스크, 최소 1개 유지)"""
        while not self._closed:
            await asyncio.sleep(self._pool_config.cleanup_interval)
            await self.prune_idle()

    async def prune_idle(self) -> int:
        """max_idle_time을 넘긴 유휴 연결을 닫고 닫은 수를 반환"""
        closed = 0
        async with self._lock:
            now = datetime.now()
            for pooled_conn in list(self._pool):
                if len(self._pool) <= 1:
                    break
                if pooled_conn.in_use:
                    continue
                idle_time = (now - pooled_conn.last_used_at).total_seconds()
                if idle_time > self._pool_config.max_idle_time:
                    self._pool.remove(pooled_conn)
                    try:
                        await pooled_conn.connection.close()
                    except Exception as e:
                        logger.error(f"Failed to close idle connection: {e}")
                    closed += 1
        if closed:
            logger.debug(f"Pruned {closed} idle connection(s) from '{self._name}'")
        return closed

    async def close(self) -> None:
        """모든 연결을 닫고 풀 종료 (모두 닫은 뒤 첫 오류를 다시 발생)"""
        if self._closed:
            return
        self._closed = True

        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass

        errors = []
        async with self._lock:
            for pooled_conn in self._pool:
                try:
                    await pooled_conn.connection.close()
                except Exception as e:
                    logger.error(f"Error closing connection: {e}")
                    errors.append(e)
            self._pool.clear()

        logger.info(f"Connection pool '{self._name}' closed", extra={"handle": self._name})
        if errors:
            raise errors[0]

    @property
    def name(self) -> str:
        return self._name

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def max_size(self) -> int:
        """최대 물리 연결 수"""
        return self._pool_config.pool_size

    @property
    def size(self) -> int:
        """현재 열려 있는 연결 수"""
        return len(self._pool)

    @property
    def in_use(self) -> int:
        """사용 중인 연결 수"""
        return sum(1 for pc in self._pool if pc.in_use)

    @property
    def available(self) -> int:
        """추가로 획득 가능한 연결 수"""
        return self.max_size - self.in_use


class ManagedTransaction:
    """SQLite 트랜잭션 컨텍스트 매니저"""

    def __init__(self, handle: 'Handle', readonly: bool = False):
        self._handle = handle
        self._readonly = readonly
        self._pooled_conn: PooledConnection | None = None
        self._ctx: TransactionContext | None = None

    async def __aenter__(self) -> TransactionContext:
        self._pooled_conn = await self._handle.pool.acquire()
        self._ctx = TransactionContext(
            self._pooled_conn.connection,
            self._readonly,
            self._handle.connection_string.begin_statement
        )
        try:
            await self._ctx.begin()
        except BaseException:
            await self._handle.pool.release(self._pooled_conn)
            raise
        return self._ctx

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            if exc_type:
                await self._ctx.rollback()
            else:
                await self._ctx.commit()
        finally:
            await self._handle.pool.release(self._pooled_conn)


class Handle:
    """
    하나의 커넥션풀을 감싸는 데이터베이스 핸들

    사용 예시:
        handle = await Handle.create('writer', connection_string, PoolConfig(pool_size=1))

        async with handle.transaction() as ctx:
            await ctx.execute("INSERT INTO ...")

        rows = await handle.fetch_all("SELECT ...")
    """

    def __init__(
        self,
        name: str,
        connection_string: ConnectionString,
        pool_config: PoolConfig | None = None,
        readonly: bool = False
    ):
        self._name = name
        self._connection_string = connection_string
        self._readonly = readonly
        self._pool = AsyncConnectionPool(name, connection_string, pool_config)

    @classmethod
    async def create(
        cls,
        name: str,
        connection_string: ConnectionString,
        pool_config: PoolConfig | None = None,
        readonly: bool = False
    ) -> 'Handle':
        """Handle 인스턴스 생성 및 초기화"""
        instance = cls(name, connection_string, pool_config, readonly)
        await instance._pool.initialize()
        return instance

    def transaction(self, readonly: bool | None = None) -> ManagedTransaction:
        """트랜잭션 컨텍스트 매니저 반환 (readonly 생략 시 핸들 기본값)"""
        if readonly is None:
            readonly = self._readonly
        return ManagedTransaction(self, readonly)

    async def execute(self, sql: str, parameters: Any = None) -> int:
        """단일 SQL을 트랜잭션으로 실행하고 변경된 행 수 반환"""
        async with self.transaction() as ctx:
            cursor = await ctx.execute(sql, parameters)
            return cursor.rowcount

    async def executemany(self, sql: str, parameters: list) -> int:
        """다중 SQL을 하나의 트랜잭션으로 실행"""
        async with self.transaction() as ctx:
            cursor = await ctx.executemany(sql, parameters)
            return cursor.rowcount

    async def fetch_one(self, sql: str, parameters: Any = None) -> aiosqlite.Row | None:
        async with self.transaction() as ctx:
            return await ctx.fetch_one(sql, parameters)

    async def fetch_all(self, sql: str, parameters: Any = None) -> list[aiosqlite.Row]:
        async with self.transaction() as ctx:
            return await ctx.fetch_all(sql, parameters)

    @property
    def name(self) -> str:
        return self._name

    @property
    def readonly(self) -> bool:
        return self._readonly

    @property
    def connection_string(self) -> ConnectionString:
        return self._connection_string

    @property
    def pool(self) -> AsyncConnectionPool:
        """커넥션풀 반환"""
        return self._pool

    @property
    def closed(self) -> bool:
        return self._pool.closed

    async def close(self) -> None:
        """핸들 종료"""
        await self._pool.close()
