import logging
import time
from functools import wraps

from django.conf import settings
from django.db import OperationalError, connection

logger = logging.getLogger(__name__)

# PostgreSQL 직렬화 실패/데드락 에러코드
PG_RETRY_ERRCODES = {"40001", "40P01"}


def _pgcode_from(exc: Exception):
    code = getattr(exc, "pgcode", None) or getattr(getattr(exc, "__cause__", None), "pgcode", None)
    if code:
        return code
    # psycopg3 는 sqlstate 이름을 사용
    return getattr(getattr(exc, "__cause__", None), "sqlstate", None)


def is_retryable(exc: Exception) -> bool:
    code = _pgcode_from(exc)
    if code and code in PG_RETRY_ERRCODES:
        return True
    if not isinstance(exc, OperationalError):
        return False
    msg = str(exc).lower()
    return any(k in msg for k in ("deadlock detected", "could not serialize access"))


def retry_on_tx_failure(max_attempts=None, backoff=0.05):
    """트랜잭션 전체를 새로 시작할 수 있는 함수에만 적용.

    바깥 atomic 블록 안에서 호출되면 이미 깨진 트랜잭션을 재시도할 수 없으므로 1회만 실행한다.
    """
    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            limit = max_attempts or settings.SHOP_TX_MAX_ATTEMPTS
            if connection.in_atomic_block:
                return fn(*args, **kwargs)
            attempt = 0
            while True:
                attempt += 1
                try:
                    return fn(*args, **kwargs)
                except Exception as e:
                    if attempt >= limit or not is_retryable(e):
                        raise
                    logger.warning(f"[retry] {fn.__name__} failed ({attempt}/{limit}): {e}")
                    time.sleep(backoff * attempt)
        return wrapper
    return deco
