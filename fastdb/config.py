"""
fastdb 설정 모델

writer/reader 핸들의 풀 크기와 SQLite 연결 옵션을 정의합니다.
기본값이 곧 고정 정책이며, 필요하면 YAML 파일로 덮어쓸 수 있습니다.

config/fastdb.yaml 예시:
    fastdb:
      options:
        busy_timeout: 5000
      reader:
        pool_size: 8
"""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

WRITER_POOL_SIZE = 1
MIN_READER_POOL_SIZE = 4
DEFAULT_PRAGMAS = ["temp_store = memory"]


def default_reader_pool_size() -> int:
    """reader 풀 크기: max(4, CPU 코어 수)"""
    return max(MIN_READER_POOL_SIZE, os.cpu_count() or 1)


class SqliteOptions(BaseModel):
    """SQLite 연결 옵션 (연결 문자열 파라미터)"""
    txlock: Literal["deferred", "immediate", "exclusive"] = "immediate"
    journal_mode: Literal["DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"] = "WAL"
    busy_timeout: int = Field(default=5000, ge=0, description="잠금 대기 시간 (ms)")
    synchronous: Literal["OFF", "NORMAL", "FULL", "EXTRA"] = "NORMAL"
    cache_size: int = 1000000000
    foreign_keys: bool = True

    @field_validator("txlock", mode="before")
    @classmethod
    def _lower(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @field_validator("journal_mode", "synchronous", mode="before")
    @classmethod
    def _upper(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class PoolConfig(BaseModel):
    """커넥션풀 설정"""
    pool_size: int = Field(default=WRITER_POOL_SIZE, ge=1, description="최대 물리 연결 수")
    pool_timeout: float = Field(default=5.0, gt=0, description="연결 획득 대기 시간 (초)")
    max_idle_time: float = Field(default=300.0, gt=0)
    cleanup_interval: float = Field(default=60.0, gt=0)
    pragmas: list[str] = Field(default_factory=lambda: list(DEFAULT_PRAGMAS))


class LoggingConfig(BaseModel):
    """fastdb 로거 설정"""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    json_format: bool = True
    log_file: str | None = None
    propagate: bool = False

    @field_validator("level", mode="before")
    @classmethod
    def _upper(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class FastDBConfig(BaseModel):
    """writer/reader 핸들 쌍 설정"""
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    options: SqliteOptions = Field(default_factory=SqliteOptions)
    writer: PoolConfig = Field(default_factory=PoolConfig)
    reader: PoolConfig = Field(
        default_factory=lambda: PoolConfig(pool_size=default_reader_pool_size())
    )

    @field_validator("reader", mode="before")
    @classmethod
    def _reader_pool_size(cls, v: Any) -> Any:
        # reader 섹션에 pool_size가 없으면 max(4, CPU 코어 수)
        if isinstance(v, dict) and "pool_size" not in v:
            return {**v, "pool_size": default_reader_pool_size()}
        return v

    @field_validator("writer")
    @classmethod
    def _single_writer(cls, v: PoolConfig) -> PoolConfig:
        # SQLite는 동시에 하나의 writer만 허용
        if v.pool_size != WRITER_POOL_SIZE:
            raise ValueError(f"writer pool_size must be {WRITER_POOL_SIZE}, got {v.pool_size}")
        return v

    @classmethod
    def from_dict(cls, config: dict[str, Any] | None) -> "FastDBConfig":
        """dict 설정에서 생성 (누락된 항목은 기본값)"""
        return cls.model_validate(config or {})


def load_config(path: str | Path) -> FastDBConfig:
    """YAML 파일의 fastdb 섹션을 읽어 설정 생성"""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return FastDBConfig.from_dict(data.get("fastdb", {}))
