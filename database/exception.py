"""
데이터베이스 관련 예외 클래스 정의
"""


class DatabaseError(Exception):
    """데이터베이스 기본 예외"""
    pass


class DatabaseNotFoundError(DatabaseError):
    """등록되지 않은 데이터베이스"""
    def __init__(self, name: str):
        self.name = name
        self.message = f"Database not registered: {name}"
        super().__init__(self.message)


class ConnectionPoolExhaustedError(DatabaseError):
    """커넥션풀 고갈"""
    pass


class TransactionError(DatabaseError):
    """트랜잭션 처리 실패"""
    pass


class ReadOnlyTransactionError(TransactionError):
    """읽기 전용 트랜잭션에서 쓰기 시도"""
    pass

