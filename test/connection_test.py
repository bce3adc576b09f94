"""
커넥션풀 / 트랜잭션 테스트

테스트 항목:
1. 커넥션 풀 (지연 생성, 획득/반환, 유휴 정리)
2. 커넥션 풀 소진 테스트 (타임아웃)
3. 트랜잭션 (커밋, 롤백, 수동 begin)
4. readOnly 모드 테스트
5. 로깅 테스트

실행: python -m pytest test/connection_test.py -v
"""

import asyncio
import logging
import time

import pytest
import pytest_asyncio

from fastdb.config import PoolConfig
from fastdb.connection import AsyncConnectionPool, Handle
from fastdb.dsn import ConnectionString
from fastdb.exception import (
    ConnectionPoolExhaustedError,
    HandleClosedError,
    ReadOnlyTransactionError,
)

logger = logging.getLogger(__name__)


@pytest_asyncio.fixture
async def handle(tmp_path):
    """테스트용 Handle (풀 크기 3)"""
    handle = await Handle.create(
        'test',
        ConnectionString(tmp_path / "pool.db"),
        PoolConfig(pool_size=3, pool_timeout=1.0)
    )
    await handle.execute(
        "CREATE TABLE jobs (id INTEGER PRIMARY KEY, name TEXT NOT NULL)"
    )
    yield handle
    await handle.close()


class TestConnectionPool:
    """커넥션 풀 관련 테스트"""

    @pytest.mark.asyncio
    async def test_pool_initialization(self, handle):
        """초기화 시 연결 1개만 생성"""
        pool = handle.pool
        assert pool.max_size == 3
        assert pool.size == 1
        assert pool.available == 3

    @pytest.mark.asyncio
    async def test_connection_acquire_release(self, handle):
        """커넥션 획득/반환 테스트"""
        pool = handle.pool

        conn1 = await pool.acquire()
        assert pool.available == 2
        assert conn1.in_use is True

        await pool.release(conn1)
        assert pool.available == 3
        assert conn1.in_use is False

    @pytest.mark.asyncio
    async def test_connections_created_on_demand(self, handle):
        """필요할 때 max_size까지 연결 생성"""
        pool = handle.pool
        connections = [await pool.acquire() for _ in range(3)]

        assert pool.size == 3
        assert pool.available == 0
        assert len({id(c.connection) for c in connections}) == 3

        for conn in connections:
            await pool.release(conn)
        assert pool.size == 3

    @pytest.mark.asyncio
    async def test_idle_connections_pruned(self, tmp_path):
        """유휴 연결은 정리되고 최소 1개는 유지"""
        handle = await Handle.create(
            'idle',
            ConnectionString(tmp_path / "idle.db"),
            PoolConfig(pool_size=3, max_idle_time=0.01)
        )
        try:
            pool = handle.pool
            connections = [await pool.acquire() for _ in range(3)]
            for conn in connections:
                await pool.release(conn)

            await asyncio.sleep(0.05)
            closed = await pool.prune_idle()

            assert closed == 2
            assert pool.size == 1
        finally:
            await handle.close()

    @pytest.mark.asyncio
    async def test_acquire_before_initialize(self, tmp_path):
        """초기화 전 획득 시 오류"""
        pool = AsyncConnectionPool('raw', ConnectionString(tmp_path / "raw.db"))
        with pytest.raises(RuntimeError):
            await pool.acquire()

    @pytest.mark.asyncio
    async def test_acquire_after_close(self, handle):
        """종료 후 획득 시 HandleClosedError"""
        await handle.close()
        assert handle.closed is True

        with pytest.raises(HandleClosedError):
            await handle.pool.acquire()


class TestConnectionPoolExhaustion:
    """커넥션 풀 소진 테스트"""

    @pytest.mark.asyncio
    async def test_pool_exhaustion_timeout(self, handle):
        """커넥션 풀 소진 시 타임아웃 테스트"""
        pool = handle.pool
        connections = [await pool.acquire() for _ in range(3)]

        with pytest.raises(ConnectionPoolExhaustedError):
            await pool.acquire(timeout=0.2)

        for conn in connections:
            await pool.release(conn)

    @pytest.mark.asyncio
    async def test_zero_timeout_fails_immediately(self, handle):
        """timeout=0은 기본 대기 시간으로 바뀌지 않음"""
        pool = handle.pool
        connections = [await pool.acquire() for _ in range(3)]

        started = time.monotonic()
        with pytest.raises(ConnectionPoolExhaustedError, match="after 0s"):
            await pool.acquire(timeout=0)
        assert time.monotonic() - started < 0.5

        for conn in connections:
            await pool.release(conn)

    @pytest.mark.asyncio
    async def test_pool_wait_and_acquire(self, handle):
        """커넥션 반환 대기 후 획득 테스트"""
        pool = handle.pool
        connections = [await pool.acquire() for _ in range(3)]

        async def release_after_delay():
            await asyncio.sleep(0.2)
            await pool.release(connections[0])

        release_task = asyncio.create_task(release_after_delay())

        new_conn = await pool.acquire(timeout=1.0)
        assert new_conn is connections[0]

        await release_task
        await pool.release(new_conn)
        for conn in connections[1:]:
            await pool.release(conn)

        logger.info("Pool wait and acquire test passed")


class TestTransaction:
    """트랜잭션 테스트"""

    @pytest.mark.asyncio
    async def test_transaction_commit(self, handle):
        """트랜잭션 커밋 테스트"""
        async with handle.transaction() as ctx:
            await ctx.execute("INSERT INTO jobs (name) VALUES (?)", ("commit_job",))

        row = await handle.fetch_one("SELECT name FROM jobs WHERE name = ?", ("commit_job",))
        assert row is not None
        assert row['name'] == "commit_job"

    @pytest.mark.asyncio
    async def test_transaction_rollback(self, handle):
        """예외 발생 시 롤백"""
        with pytest.raises(ValueError):
            async with handle.transaction() as ctx:
                await ctx.execute("INSERT INTO jobs (name) VALUES (?)", ("rollback_job",))
                raise ValueError("Force rollback")

        row = await handle.fetch_one("SELECT name FROM jobs WHERE name = ?", ("rollback_job",))
        assert row is None
        assert handle.pool.in_use == 0

    @pytest.mark.asyncio
    async def test_manual_rollback_and_begin(self, handle):
        """수동 rollback 후 다시 begin"""
        async with handle.transaction() as ctx:
            await ctx.execute("INSERT INTO jobs (name) VALUES (?)", ("discarded",))
            await ctx.rollback()
            assert ctx.in_transaction is False

            await ctx.begin()
            await ctx.execute("INSERT INTO jobs (name) VALUES (?)", ("kept",))

        rows = await handle.fetch_all("SELECT name FROM jobs ORDER BY id")
        assert [row['name'] for row in rows] == ["kept"]

    @pytest.mark.asyncio
    async def test_begin_twice_warns(self, handle, caplog):
        """이미 시작된 트랜잭션에 begin 호출 시 경고만 남김"""
        async with handle.transaction() as ctx:
            with caplog.at_level(logging.WARNING, logger="fastdb.connection"):
                await ctx.begin()
            assert ctx.in_transaction is True

        assert any("already started" in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_execute_returns_rowcount(self, handle):
        """execute/executemany는 변경된 행 수 반환"""
        count = await handle.executemany(
            "INSERT INTO jobs (name) VALUES (?)", [("a",), ("b",), ("c",)]
        )
        assert count == 3

        count = await handle.execute("DELETE FROM jobs WHERE name != ?", ("a",))
        assert count == 2


class TestReadOnlyTransaction:
    """읽기 전용 트랜잭션 테스트"""

    @pytest.mark.asyncio
    async def test_readonly_select(self, handle):
        """읽기 전용 SELECT 테스트"""
        async with handle.transaction(readonly=True) as ctx:
            rows = await ctx.fetch_all("SELECT * FROM jobs")
        assert isinstance(rows, list)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sql", [
        "INSERT INTO jobs (name) VALUES ('x')",
        "  update jobs SET name = 'y'",
        "DELETE FROM jobs",
        "REPLACE INTO jobs (id, name) VALUES (1, 'z')",
        "DROP TABLE jobs",
    ])
    async def test_readonly_write_blocked(self, handle, sql):
        """읽기 전용 모드에서 쓰기 차단 테스트"""
        async with handle.transaction(readonly=True) as ctx:
            with pytest.raises(ReadOnlyTransactionError):
                await ctx.execute(sql)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sql", [
        "WITH n(name) AS (SELECT 'cte') INSERT INTO jobs (name) SELECT name FROM n",
        "-- leading comment\nINSERT INTO jobs (name) VALUES ('commented')",
        "PRAGMA user_version = 7",
    ])
    async def test_readonly_write_blocked_by_engine(self, handle, sql):
        """키워드 검사를 우회하는 쓰기도 query_only로 차단"""
        async with handle.transaction(readonly=True) as ctx:
            with pytest.raises(ReadOnlyTransactionError):
                await ctx.execute(sql)

        row = await handle.fetch_one("SELECT count(*) AS c FROM jobs")
        assert row['c'] == 0
        row = await handle.fetch_one("PRAGMA user_version")
        assert row[0] == 0

    @pytest.mark.asyncio
    async def test_connection_writable_after_readonly(self, tmp_path):
        """읽기 전용 트랜잭션 후 같은 연결로 쓰기 가능"""
        handle = await Handle.create(
            'single', ConnectionString(tmp_path / "single.db"), PoolConfig(pool_size=1)
        )
        try:
            async with handle.transaction(readonly=True) as ctx:
                await ctx.fetch_all("SELECT 1")

            with pytest.raises(ValueError):
                async with handle.transaction(readonly=True) as ctx:
                    raise ValueError("Force rollback")

            await handle.execute("CREATE TABLE t (x INTEGER)")
            assert await handle.execute("INSERT INTO t (x) VALUES (?)", (1,)) == 1

            row = await handle.fetch_one("PRAGMA query_only")
            assert row[0] == 0
        finally:
            await handle.close()

    @pytest.mark.asyncio
    async def test_readonly_handle_default(self, tmp_path):
        """readonly 핸들의 기본 트랜잭션은 읽기 전용"""
        handle = await Handle.create(
            'ro', ConnectionString(tmp_path / "ro.db"), PoolConfig(pool_size=2), readonly=True
        )
        try:
            async with handle.transaction() as ctx:
                assert ctx.readonly is True
            async with handle.transaction(readonly=False) as ctx:
                assert ctx.readonly is False
        finally:
            await handle.close()


class TestLogging:
    """SQL 로깅 테스트"""

    @pytest.mark.asyncio
    async def test_query_logging(self, handle, caplog):
        """쿼리 로깅 테스트"""
        with caplog.at_level(logging.DEBUG, logger="fastdb.connection"):
            await handle.fetch_all("SELECT * FROM jobs WHERE id > ?", (0,))

        log_messages = [record.message for record in caplog.records]
        assert any("[SQL]" in msg and "SELECT" in msg for msg in log_messages)
        assert any("[SQL Result] 0 row(s)" in msg for msg in log_messages)
