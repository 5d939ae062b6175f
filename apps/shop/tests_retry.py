import pytest
from django.db import OperationalError

from . import tx
from .tx import is_retryable, retry_on_tx_failure


class FakePgError(Exception):
    def __init__(self, pgcode):
        super().__init__("pg")
        self.pgcode = pgcode


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(tx.time, "sleep", lambda s: None)


def test_is_retryable():
    assert is_retryable(FakePgError("40001"))
    assert is_retryable(FakePgError("40P01"))
    assert not is_retryable(FakePgError("23505"))
    assert is_retryable(OperationalError("deadlock detected"))
    assert not is_retryable(OperationalError("no such table: shop_order"))
    assert not is_retryable(ValueError("could not serialize access"))


def test_retries_until_success():
    calls = []

    @retry_on_tx_failure(max_attempts=3)
    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise OperationalError("could not serialize access due to concurrent update")
        return "ok"

    assert flaky() == "ok"
    assert len(calls) == 3


def test_gives_up_after_max_attempts():
    calls = []

    @retry_on_tx_failure(max_attempts=2)
    def always_deadlocks():
        calls.append(1)
        raise OperationalError("deadlock detected")

    with pytest.raises(OperationalError):
        always_deadlocks()
    assert len(calls) == 2


def test_non_retryable_error_is_raised_immediately():
    calls = []

    @retry_on_tx_failure(max_attempts=5)
    def broken():
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        broken()
    assert len(calls) == 1


@pytest.mark.django_db
def test_no_retry_inside_outer_atomic_block():
    calls = []

    @retry_on_tx_failure(max_attempts=3)
    def deadlocks():
        calls.append(1)
        raise OperationalError("deadlock detected")

    # django_db(transaction=False) 는 테스트를 atomic 블록으로 감싼다
    with pytest.raises(OperationalError):
        deadlocks()
    assert len(calls) == 1
