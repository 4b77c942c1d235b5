from datetime import datetime, timezone

import pytest

from marketledger.config import Settings
from marketledger.core.exceptions import (
    InvariantViolationError,
    NoWinnersError,
    OptionNotFoundError,
    ValidationError,
)
from marketledger.models.commitment import CommitmentStatusEnum, PositionEnum
from marketledger.models.market import MarketStatusEnum
from marketledger.schemas.commitment import CommitmentSchema
from marketledger.schemas.market import MarketOptionSchema, MarketSchema
from marketledger.services.payout_calculation_service import PayoutCalculator

NOW = datetime(2030, 1, 1, tzinfo=timezone.utc)


def _market(*option_ids: str) -> MarketSchema:
    return MarketSchema(
        id="m-1",
        title="Test market",
        status=MarketStatusEnum.ACTIVE,
        options=[MarketOptionSchema(id=o, text=o.upper()) for o in option_ids],
        ends_at=NOW,
    )


def _commitment(commitment_id, user_id, tokens, option_id=None, position=None) -> CommitmentSchema:
    return CommitmentSchema(
        id=commitment_id,
        user_id=user_id,
        market_id="m-1",
        position=position,
        option_id=option_id,
        tokens_committed=tokens,
        odds=2.0,
        potential_winning=tokens * 2.0,
        status=CommitmentStatusEnum.ACTIVE,
        committed_at=NOW,
    )


@pytest.fixture
def calculator():
    return PayoutCalculator(Settings(_env_file=None))


class TestPayoutCalculation:
    """지급액 계산 테스트"""

    def test_single_winner_takes_whole_winner_pool(self, calculator):
        """
        총 풀 2000, 하우스 5%, 생성자 2% -> winner_pool 1860
        yes 커밋먼트가 하나뿐이므로 win_share 1.0, 지급액 1860
        """
        # Arrange
        market = _market("yes", "no")
        commitments = [
            _commitment("c-1", "alice", 500, position=PositionEnum.YES),
            _commitment("c-2", "bob", 300, position=PositionEnum.NO),
            _commitment("c-3", "carol", 1200, option_id="no"),
        ]

        # Act
        calc = calculator.calculate_payouts(market, commitments, "yes", 0.02)

        # Assert
        assert calc.total_pool == 2000
        assert calc.house_fee == 100
        assert calc.creator_fee == 40
        assert calc.winner_pool == 1860
        assert calc.winner_count == 1
        assert calc.loser_count == 2
        winner = calc.winners[0]
        assert winner.user_id == "alice"
        assert winner.win_share == 1.0
        assert winner.payout_amount == 1860
        assert winner.profit == 1360
        assert calc.total_payout == calc.winner_pool
        assert calc.unallocated == 0

    def test_proportional_shares_with_floor_rounding(self, calculator):
        market = _market("a", "b", "c")
        commitments = [
            _commitment("c-1", "u1", 100, option_id="a"),
            _commitment("c-2", "u2", 100, option_id="a"),
            _commitment("c-3", "u3", 100, option_id="a"),
            _commitment("c-4", "u4", 701, option_id="b"),
        ]

        calc = calculator.calculate_payouts(market, commitments, "a", 0.01)

        # pool 1001 -> house 50, creator 10, winner_pool 941 -> 313 each
        assert calc.winner_pool == 941
        assert [w.payout_amount for w in calc.winners] == [313, 313, 313]
        assert calc.unallocated == 2
        assert calc.unallocated <= calc.winner_count
        assert sum(p.payout_amount for p in calc.commitment_payouts) <= calc.winner_pool

    def test_losers_get_nothing(self, calculator):
        market = _market("yes", "no")
        commitments = [
            _commitment("c-1", "alice", 100, option_id="yes"),
            _commitment("c-2", "bob", 100, option_id="no"),
        ]

        calc = calculator.calculate_payouts(market, commitments, "yes", 0.05)

        loser = calc.losers[0]
        assert loser.payout_amount == 0
        assert loser.profit == -100

    def test_user_payouts_are_aggregated(self, calculator):
        market = _market("yes", "no")
        commitments = [
            _commitment("c-1", "alice", 100, option_id="yes"),
            _commitment("c-2", "alice", 50, option_id="no"),
            _commitment("c-3", "bob", 100, option_id="yes"),
        ]

        calc = calculator.calculate_payouts(market, commitments, "yes", 0.02)

        alice = next(p for p in calc.payouts if p.user_id == "alice")
        assert alice.tokens_staked == 150
        assert alice.win_share == pytest.approx(0.5)
        assert alice.payout_amount == calc.winners[0].payout_amount

    def test_empty_commitments(self, calculator):
        calc = calculator.calculate_payouts(_market("yes", "no"), [], "yes", 0.02)

        assert calc.total_pool == 0
        assert calc.winner_count == 0
        assert calc.commitment_payouts == []

    def test_pure_and_deterministic(self, calculator):
        market = _market("yes", "no")
        commitments = [
            _commitment("c-1", "alice", 70, option_id="yes"),
            _commitment("c-2", "bob", 30, option_id="yes"),
            _commitment("c-3", "carol", 90, option_id="no"),
        ]

        first = calculator.calculate_payouts(market, commitments, "yes", 0.03)
        second = calculator.calculate_payouts(market, commitments, "yes", 0.03)

        assert [p.payout_amount for p in first.commitment_payouts] == [
            p.payout_amount for p in second.commitment_payouts
        ]


class TestPayoutAuditTrail:
    def test_audit_records_identification_method(self, calculator):
        market = _market("yes", "no")
        commitments = [
            _commitment("c-1", "alice", 10, position=PositionEnum.YES),
            _commitment("c-2", "bob", 10, option_id="no"),
            _commitment("c-3", "carol", 10, option_id="yes", position=PositionEnum.YES),
        ]

        calc = calculator.calculate_payouts(market, commitments, "yes", 0.02)

        audit = calc.audit_trail
        assert audit.total_commitments_processed == 3
        assert audit.binary_commitments == 1
        assert audit.multi_option_commitments == 1
        assert audit.hybrid_commitments == 1
        assert audit.winner_identification_summary.position_based == 1
        assert audit.winner_identification_summary.option_id_based == 1
        assert audit.winner_identification_summary.hybrid == 1
        assert audit.verification_checks.passed

        first = calc.commitment_payouts[0].audit_trail
        assert first.original_option_id is None
        assert first.derived_option_id == "yes"

    def test_legacy_position_only_record_in_multi_option_market(self, calculator):
        """position 만 있는 과거 레코드는 yes -> 첫 번째 선택지로 판정"""
        market = _market("red", "green", "blue")
        commitments = [
            _commitment("c-1", "alice", 100, position=PositionEnum.YES),
            _commitment("c-2", "bob", 100, option_id="blue"),
        ]

        calc = calculator.calculate_payouts(market, commitments, "red", 0.02)

        assert calc.winners[0].user_id == "alice"

    def test_unknown_stored_option_is_a_loser(self, calculator):
        market = _market("red", "green", "blue")
        commitments = [
            _commitment("c-1", "alice", 100, option_id="red"),
            _commitment("c-2", "bob", 100, option_id="purple"),
        ]

        calc = calculator.calculate_payouts(market, commitments, "red", 0.02)

        assert calc.loser_count == 1
        assert calc.losers[0].user_id == "bob"


class TestPayoutValidation:
    def test_no_winners_carries_calculation(self, calculator):
        market = _market("yes", "no")
        commitments = [_commitment("c-1", "alice", 100, option_id="no")]

        with pytest.raises(NoWinnersError) as exc_info:
            calculator.calculate_payouts(market, commitments, "yes", 0.02)

        calc = exc_info.value.calculation
        assert calc.winner_count == 0
        assert calc.total_payout == 0
        assert calc.unallocated == calc.winner_pool == 93

    @pytest.mark.parametrize("fee", [0.0, 0.005, 0.06])
    def test_creator_fee_bounds(self, calculator, fee):
        with pytest.raises(ValidationError):
            calculator.calculate_payouts(_market("yes", "no"), [], "yes", fee)

    def test_unknown_winning_option(self, calculator):
        with pytest.raises(OptionNotFoundError):
            calculator.calculate_payouts(_market("yes", "no"), [], "maybe", 0.02)

    def test_duplicate_commitment_fails_verification(self, calculator):
        market = _market("yes", "no")
        duplicate = _commitment("c-1", "alice", 100, option_id="yes")

        with pytest.raises(InvariantViolationError):
            calculator.calculate_payouts(market, [duplicate, duplicate], "yes", 0.02)

    def test_commitment_without_addressing_fails(self, calculator):
        market = _market("yes", "no")
        broken = _commitment("c-1", "alice", 100)

        with pytest.raises(InvariantViolationError):
            calculator.calculate_payouts(market, [broken], "yes", 0.02)
