import pytest
from unittest.mock import patch

from marketledger.core.exceptions import ConcurrencyExhaustedError
from marketledger.models.balance import UserBalance


def _corrupt(uow, user_id, **changes):
    """원장을 거치지 않고 저장된 잔액 행을 직접 변경"""

    def _unit(session):
        balance = session.get(UserBalance, user_id)
        for field, value in changes.items():
            setattr(balance, field, value)

    uow.within_transaction(_unit)


class TestBalanceAudit:
    """잔액 감사 테스트"""

    def test_clean_history_has_no_inconsistencies(
        self, make_market, fund, commit, resolution_service, reconciliation_service
    ):
        # Given
        market = make_market()
        fund("alice", 500)
        fund("bob", 300)
        commit("alice", market.id, 500, position="yes")
        commit("bob", market.id, 300, position="no")
        resolution_service.resolve_market(market.id, "yes", [], "admin", 0.02)

        # When
        alice = reconciliation_service.audit_user_balance("alice")
        bob = reconciliation_service.audit_user_balance("bob")

        # Then
        assert alice.inconsistencies == []
        assert alice.conserved is True
        assert alice.calculated_balance.total_earned == 500 + alice.current_balance.available_tokens
        assert alice.calculated_balance.total_spent == 500
        assert bob.inconsistencies == []
        assert bob.calculated_balance.total_spent == 300
        assert bob.active_commitment_count == 0

    def test_open_commitments_are_counted(self, make_market, fund, commit, reconciliation_service):
        market = make_market()
        fund("alice", 500)
        commit("alice", market.id, 120, position="yes")

        audit = reconciliation_service.audit_user_balance("alice")

        assert audit.inconsistencies == []
        assert audit.calculated_balance.committed_tokens == 120
        assert audit.calculated_balance.available_tokens == 380
        assert audit.transaction_count == 2
        assert audit.active_commitment_count == 1

    def test_detects_drift(self, fund, uow, reconciliation_service):
        fund("alice", 500)
        _corrupt(uow, "alice", available_tokens=450)

        audit = reconciliation_service.audit_user_balance("alice")

        assert audit.conserved is False
        [drift] = audit.inconsistencies
        assert drift.field == "available_tokens"
        assert drift.stored_value == 450
        assert drift.calculated_value == 500
        assert drift.difference == 50

    def test_audit_does_not_write(self, fund, uow, reconciliation_service, read_balance):
        fund("alice", 500)
        _corrupt(uow, "alice", available_tokens=450)
        before = read_balance("alice")

        reconciliation_service.audit_user_balance("alice")

        assert read_balance("alice") == before

    def test_unknown_user(self, reconciliation_service):
        audit = reconciliation_service.audit_user_balance("nobody")

        assert audit.current_balance is None
        assert audit.inconsistencies == []
        assert audit.conserved is True


class TestReconcile:
    """거래 로그 기준 잔액 복원"""

    def test_reconcile_restores_logged_state(self, fund, uow, reconciliation_service, transaction_log, read_balance):
        # Given
        fund("alice", 500)
        _corrupt(uow, "alice", available_tokens=10, total_earned=9999)
        corrupted = read_balance("alice")
        logged_before = transaction_log.get_user_transactions("alice").total_count

        # When
        balance = reconciliation_service.reconcile("alice")

        # Then
        assert balance.available_tokens == 500
        assert balance.total_earned == 500
        assert balance.version == corrupted.version + 1
        assert reconciliation_service.audit_user_balance("alice").inconsistencies == []
        # 재계산은 거래를 남기지 않는다
        assert transaction_log.get_user_transactions("alice").total_count == logged_before

    def test_reconcile_keeps_committed_tokens(self, make_market, fund, commit, uow, reconciliation_service):
        market = make_market()
        fund("alice", 500)
        commit("alice", market.id, 200, position="no")
        _corrupt(uow, "alice", committed_tokens=0)

        balance = reconciliation_service.reconcile("alice")

        assert balance.committed_tokens == 200
        assert balance.available_tokens == 300
        assert reconciliation_service.check_conservation("alice") is True


class TestConservation:
    def test_holds_through_full_lifecycle(
        self, make_market, fund, commit, resolution_service, reconciliation_service
    ):
        """발행 -> 커밋 -> 정산 -> 취소 전 구간에서 보존식이 유지된다"""
        resolved = make_market()
        cancelled = make_market()
        for user_id in ("alice", "bob", "carol"):
            fund(user_id, 1000)
        commit("alice", resolved.id, 400, position="yes")
        commit("bob", resolved.id, 250, position="no")
        commit("carol", resolved.id, 100, position="yes")
        commit("alice", cancelled.id, 300, position="no")
        commit("carol", cancelled.id, 50, position="yes")

        resolution_service.resolve_market(resolved.id, "yes", [], "admin", 0.03)
        resolution_service.cancel_market(cancelled.id, cancelled_by="admin")

        for user_id in ("alice", "bob", "carol"):
            assert reconciliation_service.check_conservation(user_id) is True
            assert reconciliation_service.audit_user_balance(user_id).inconsistencies == []

    def test_broken_row_is_reported(self, fund, uow, reconciliation_service):
        fund("alice", 100)
        _corrupt(uow, "alice", total_spent=5)

        assert reconciliation_service.check_conservation("alice") is False


class TestBatchReconciliation:
    """여러 사용자 일괄 재계산 / 헬스 리포트"""

    def test_reconcile_users_fixes_only_drifted(self, fund, uow, reconciliation_service, read_balance):
        # Given
        fund("alice", 500)
        fund("bob", 300)
        _corrupt(uow, "bob", available_tokens=250, total_spent=7)
        alice_before = read_balance("alice")

        # When
        report = reconciliation_service.reconcile_users(["alice", "bob"])

        # Then
        assert report.total_users_checked == 2
        assert report.users_with_inconsistencies == 1
        assert report.users_fixed == 1
        assert {i.field for i in report.inconsistencies} == {"available_tokens", "total_spent"}
        assert report.errors == []
        assert read_balance("alice") == alice_before
        assert read_balance("bob").available_tokens == 300

    def test_failed_fix_is_reported_and_others_continue(self, fund, uow, reconciliation_service, read_balance):
        fund("alice", 100)
        fund("bob", 100)
        _corrupt(uow, "alice", available_tokens=1)
        _corrupt(uow, "bob", available_tokens=2)
        original = reconciliation_service.reconcile

        def flaky_reconcile(user_id):
            if user_id == "alice":
                raise ConcurrencyExhaustedError()
            return original(user_id)

        with patch.object(reconciliation_service, "reconcile", side_effect=flaky_reconcile):
            report = reconciliation_service.reconcile_users(["alice", "bob"])

        assert report.users_with_inconsistencies == 2
        assert report.users_fixed == 1
        assert len(report.errors) == 1
        assert "alice" in report.errors[0]
        assert read_balance("bob").available_tokens == 100

    def test_empty_batch(self, reconciliation_service):
        report = reconciliation_service.reconcile_users([])

        assert report.total_users_checked == 0
        assert report.inconsistencies == []

    def test_reconcile_all_users(self, fund, uow, reconciliation_service):
        for user_id in ("alice", "bob", "carol"):
            fund(user_id, 100)
        _corrupt(uow, "carol", committed_tokens=40)

        report = reconciliation_service.reconcile_all_users()

        assert report.total_users_checked == 3
        assert report.users_fixed == 1
        assert reconciliation_service.check_conservation("carol") is True

    def test_health_report(self, make_market, fund, commit, uow, reconciliation_service, ledger, read_balance):
        # Given
        market = make_market()
        fund("alice", 500)
        fund("bob", 300)
        commit("alice", market.id, 200, position="yes")
        ledger.get_balance("dormant")
        _corrupt(uow, "bob", total_spent=10)
        before = read_balance("bob")

        # When
        health = reconciliation_service.generate_health_report()

        # Then
        assert health.total_users == 3
        assert health.users_with_balances == 2
        assert health.total_tokens_in_circulation == 800
        assert health.total_tokens_committed == 200
        assert health.average_balance_per_user == pytest.approx(800 / 3)
        assert health.sampled_users == 3
        assert health.inconsistency_rate == pytest.approx(1 / 3)
        assert health.non_conserved_users == ["bob"]
        # 헬스 리포트는 잔액을 고치지 않는다
        assert read_balance("bob") == before

    def test_health_report_without_users(self, reconciliation_service):
        health = reconciliation_service.generate_health_report()

        assert health.total_users == 0
        assert health.average_balance_per_user == 0.0
        assert health.inconsistency_rate == 0.0
