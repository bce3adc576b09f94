"""
fastdb 관련 예외 클래스 정의
"""


class FastDBError(Exception):
    """fastdb 기본 예외"""
    pass


class OpenError(FastDBError):
    """데이터베이스 열기 실패 (파일 접근, PRAGMA 적용 등)"""
    def __init__(self, filename: str, message: str = None):
        self.filename = filename
        self.message = message or f"Failed to open database: {filename}"
        super().__init__(self.message)


class ConnectionStringError(FastDBError, ValueError):
    """연결 문자열 파싱 실패"""
    def __init__(self, connection_string: str, message: str = None):
        self.connection_string = connection_string
        self.message = message or f"Invalid connection string: {connection_string}"
        super().__init__(self.message)


class ConnectionPoolExhaustedError(FastDBError):
    """커넥션풀에서 제한 시간 내에 연결을 얻지 못함"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class HandleClosedError(FastDBError):
    """이미 닫힌 핸들에 대한 작업"""
    def __init__(self, name: str):
        self.name = name
        self.message = f"Handle '{name}' is closed"
        super().__init__(self.message)


class ReadOnlyTransactionError(FastDBError):
    """읽기 전용 트랜잭션에서 쓰기 쿼리 실행"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class TimeDecodeError(FastDBError, ValueError):
    """저장된 값을 Time으로 변환할 수 없음"""
    def __init__(self, value, message: str = None):
        self.value = value
        self.kind = type(value).__name__
        self.message = message or f"Time.scan: unsupported type: {self.kind}"
        super().__init__(self.message)
