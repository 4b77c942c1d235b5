import pytest
from unittest.mock import patch

from marketledger.core.exceptions import (
    ConcurrencyExhaustedError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvariantViolationError,
)
from marketledger.database.unit_of_work import UnitOfWork
from marketledger.models.transaction import TransactionTypeEnum
from marketledger.repositories.balance_repository import BalanceRepository
from marketledger.schemas.balance import TokenPurchaseRequest
from marketledger.services.balance_ledger import BalanceLedger
from marketledger.services.transaction_log import TransactionLog


def _conserved(balance) -> bool:
    return (
        balance.available_tokens + balance.committed_tokens
        == balance.total_earned - balance.total_spent
    )


class TestBalanceLedgerMutations:
    """변경 타입별 잔액 규칙"""

    def test_get_balance_creates_zero_account(self, ledger):
        balance = ledger.get_balance("alice")

        assert balance.available_tokens == 0
        assert balance.committed_tokens == 0
        assert balance.version == 1

    def test_purchase(self, ledger):
        balance = ledger.apply_mutation("alice", 500, TransactionTypeEnum.PURCHASE)

        assert balance.available_tokens == 500
        assert balance.total_earned == 500
        assert _conserved(balance)

    def test_commit_moves_available_to_committed(self, ledger, fund):
        fund("alice", 500)

        balance = ledger.apply_mutation("alice", 200, "commit", related_id="m-1")

        assert balance.available_tokens == 300
        assert balance.committed_tokens == 200
        assert _conserved(balance)

    def test_commit_insufficient_balance_leaves_state_unchanged(self, ledger, fund, transaction_log):
        """available=50 에서 100 커밋 시도 -> InsufficientBalance, 잔액/version 그대로"""
        # Arrange
        before = fund("alice", 50)

        # Act
        with pytest.raises(InsufficientBalanceError):
            ledger.apply_mutation("alice", 100, TransactionTypeEnum.COMMIT)

        # Assert
        after = ledger.get_balance("alice")
        assert after.available_tokens == 50
        assert after.version == before.version
        assert transaction_log.get_user_transactions("alice").total_count == 1

    def test_win_releases_stake_and_books_payout(self, ledger, fund):
        fund("alice", 500)
        ledger.apply_mutation("alice", 500, TransactionTypeEnum.COMMIT)

        balance = ledger.apply_mutation("alice", 1860, TransactionTypeEnum.WIN, released=500)

        assert balance.available_tokens == 1860
        assert balance.committed_tokens == 0
        assert balance.total_earned == 500 + 1860
        assert balance.total_spent == 500
        assert _conserved(balance)

    def test_win_released_defaults_to_amount(self, ledger, fund):
        fund("alice", 100)
        ledger.apply_mutation("alice", 100, TransactionTypeEnum.COMMIT)

        balance = ledger.apply_mutation("alice", 100, TransactionTypeEnum.WIN)

        assert balance.committed_tokens == 0
        assert balance.available_tokens == 100
        assert _conserved(balance)

    def test_loss(self, ledger, fund):
        fund("bob", 300)
        ledger.apply_mutation("bob", 300, TransactionTypeEnum.COMMIT)

        balance = ledger.apply_mutation("bob", 300, TransactionTypeEnum.LOSS)

        assert balance.committed_tokens == 0
        assert balance.available_tokens == 0
        assert balance.total_spent == 300
        assert _conserved(balance)

    def test_refund(self, ledger, fund):
        fund("bob", 300)
        ledger.apply_mutation("bob", 120, TransactionTypeEnum.COMMIT)

        balance = ledger.apply_mutation("bob", 120, TransactionTypeEnum.REFUND)

        assert balance.available_tokens == 300
        assert balance.committed_tokens == 0
        assert _conserved(balance)

    def test_negative_committed_is_invariant_violation(self, ledger, fund, transaction_log):
        """committed 보다 큰 loss 는 원자 단위 전체를 중단시킨다"""
        fund("carol", 100)
        ledger.apply_mutation("carol", 40, TransactionTypeEnum.COMMIT)

        with pytest.raises(InvariantViolationError):
            ledger.apply_mutation("carol", 41, TransactionTypeEnum.LOSS)

        balance = ledger.get_balance("carol")
        assert balance.committed_tokens == 40
        assert transaction_log.get_user_transactions("carol").total_count == 2

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_amount_rejected(self, ledger, amount):
        with pytest.raises(InvalidAmountError):
            ledger.apply_mutation("dave", amount, TransactionTypeEnum.PURCHASE)

    def test_unknown_type_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.apply_mutation("dave", 10, "bonus")

    def test_version_increments_once_per_mutation(self, ledger, fund):
        start = fund("erin", 100)

        ledger.apply_mutation("erin", 10, TransactionTypeEnum.COMMIT)
        balance = ledger.apply_mutation("erin", 10, TransactionTypeEnum.REFUND)

        assert balance.version == start.version + 2


class TestTransactionLogging:
    """잔액 변경 1건당 거래 로그 1건"""

    def test_each_mutation_appends_one_transaction(self, ledger, fund, transaction_log):
        # Arrange
        fund("alice", 500)

        # Act
        ledger.apply_mutation("alice", 200, TransactionTypeEnum.COMMIT, related_id="m-1", metadata={"source": "test"})

        # Assert
        page = transaction_log.get_user_transactions("alice")
        assert page.total_count == 2
        latest = page.data[0]
        assert latest.type == TransactionTypeEnum.COMMIT
        assert latest.amount == 200
        assert latest.balance_before == 500
        assert latest.balance_after == 300
        assert latest.related_id == "m-1"
        assert latest.metadata == {"source": "test"}

    def test_win_records_released_amount(self, ledger, fund, transaction_log):
        fund("alice", 100)
        ledger.apply_mutation("alice", 100, TransactionTypeEnum.COMMIT)
        ledger.apply_mutation("alice", 250, TransactionTypeEnum.WIN, released=100)

        latest = transaction_log.get_user_transactions("alice", limit=1).data[0]
        assert latest.type == TransactionTypeEnum.WIN
        assert latest.amount == 250
        assert latest.released_amount == 100

    def test_pagination(self, ledger, transaction_log):
        for _ in range(5):
            ledger.apply_mutation("frank", 1, TransactionTypeEnum.PURCHASE)

        page = transaction_log.get_user_transactions("frank", limit=2, offset=0)

        assert page.total_count == 5
        assert len(page.data) == 2
        assert page.has_next is True

    def test_limit_is_capped(self, transaction_log):
        page = transaction_log.get_user_transactions("nobody", limit=500)
        assert page.limit == 100


class TestTokenPurchase:
    def test_purchase_with_reference_is_applied_once(self, ledger, transaction_log):
        request = TokenPurchaseRequest(user_id="alice", amount=100, reference_id="pay-1", reason="top-up")

        ledger.purchase(request)
        balance = ledger.purchase(request)

        assert balance.available_tokens == 100
        assert transaction_log.get_user_transactions("alice").total_count == 1

    def test_purchase_without_reference_always_applies(self, ledger):
        request = TokenPurchaseRequest(user_id="alice", amount=100)

        ledger.purchase(request)
        balance = ledger.purchase(request)

        assert balance.available_tokens == 200


class TestOptimisticLocking:
    """낙관적 락 충돌 시 재시도"""

    def test_conflicting_writer_triggers_retry(self, ledger, fund):
        """
        잔액을 읽은 뒤 flush 전에 다른 writer 가 먼저 커밋하면
        StaleDataError -> 최신 값으로 다시 실행되어 갱신 유실이 없다
        """
        # Arrange
        start = fund("alice", 1000)
        original = BalanceRepository.get_or_create_model
        state = {"raced": False, "calls": 0}

        def racing_get_or_create(repo, user_id):
            state["calls"] += 1
            balance = original(repo, user_id)
            if not state["raced"]:
                state["raced"] = True
                ledger.apply_mutation(user_id, 300, TransactionTypeEnum.COMMIT)
            return balance

        # Act
        with patch.object(BalanceRepository, "get_or_create_model", racing_get_or_create):
            balance = ledger.apply_mutation("alice", 200, TransactionTypeEnum.COMMIT)

        # Assert
        assert state["calls"] == 3  # 첫 시도, 끼어든 writer, 재시도
        assert balance.available_tokens == 500
        assert balance.committed_tokens == 500
        assert balance.version == start.version + 2

    def test_concurrent_first_insert_is_retried(self, ledger, transaction_log):
        """
        잔액 행이 없다고 읽은 직후 다른 작업 단위가 같은 사용자의 행을 먼저 만들면
        PK 충돌 -> 재시도에서 기존 행을 읽어 두 구매 모두 반영된다
        """
        # Arrange
        original = BalanceRepository.create
        state = {"raced": False}

        def racing_create(repo, **kwargs):
            if not state["raced"]:
                state["raced"] = True
                ledger.apply_mutation(kwargs["user_id"], 5, TransactionTypeEnum.PURCHASE)
            return original(repo, **kwargs)

        # Act
        with patch.object(BalanceRepository, "create", racing_create):
            balance = ledger.apply_mutation("newbie", 10, TransactionTypeEnum.PURCHASE)

        # Assert
        assert balance.available_tokens == 15
        assert balance.total_earned == 15
        assert _conserved(balance)
        assert transaction_log.get_user_transactions("newbie").total_count == 2

    def test_retries_exhausted(self, session_factory, settings):
        uow = UnitOfWork(session_factory, max_retries=2)
        ledger = BalanceLedger(uow, TransactionLog(uow), settings)
        ledger.apply_mutation("alice", 100, TransactionTypeEnum.PURCHASE)

        original = BalanceRepository.get_or_create_model
        state = {"depth": 0}

        def always_racing(repo, user_id):
            balance = original(repo, user_id)
            if state["depth"] == 0:
                state["depth"] += 1
                try:
                    ledger.apply_mutation(user_id, 1, TransactionTypeEnum.PURCHASE)
                finally:
                    state["depth"] -= 1
            return balance

        with patch.object(BalanceRepository, "get_or_create_model", always_racing):
            with pytest.raises(ConcurrencyExhaustedError):
                ledger.apply_mutation("alice", 10, TransactionTypeEnum.COMMIT)

        balance = ledger.get_balance("alice")
        # 끼어든 purchase 2건만 반영되고 commit 은 반영되지 않는다
        assert balance.available_tokens == 102
        assert balance.committed_tokens == 0


class TestUnitOfWork:
    def test_rolls_back_on_error(self, uow, ledger):
        def _unit(session):
            ledger.mutate(session, "alice", 100, TransactionTypeEnum.PURCHASE)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            uow.within_transaction(_unit)

        assert ledger.get_balance("alice").available_tokens == 0

    def test_joined_mutations_commit_together(self, uow, ledger):
        def _unit(session):
            ledger.mutate(session, "alice", 100, TransactionTypeEnum.PURCHASE)
            ledger.mutate(session, "alice", 60, TransactionTypeEnum.COMMIT)

        uow.within_transaction(_unit)

        balance = ledger.get_balance("alice")
        assert balance.available_tokens == 40
        assert balance.committed_tokens == 60

    def test_max_retries_must_be_positive(self, session_factory):
        with pytest.raises(ValueError):
            UnitOfWork(session_factory, max_retries=0)
