"""
정산 지급액 계산기

저장소에 접근하지 않는 순수 계산. 같은 입력이면 항상 같은 지급 계획을 만든다.

- total_pool = 전체 커밋 토큰 합
- house_fee = floor(total_pool * HOUSE_FEE_PERCENTAGE)
- creator_fee = floor(total_pool * creator_fee_percentage)
- winner_pool = total_pool - house_fee - creator_fee
- 승자 지급액 = floor(winner_pool * 본인 토큰 / 승자 토큰 합)

버림으로 남는 잔여분(unallocated)은 승자 수보다 작으며 배분하지 않는다.
"""

import logging
from collections import OrderedDict
from decimal import ROUND_FLOOR, Decimal
from typing import Dict, List, Sequence

from marketledger.config import Settings
from marketledger.core.exceptions import (
    AmbiguousTargetError,
    InvariantViolationError,
    NoWinnersError,
    OptionNotFoundError,
    ValidationError,
)
from marketledger.core.targeting import HYBRID, OPTION_ID_BASED, POSITION_BASED, CommitmentTarget
from marketledger.schemas.commitment import CommitmentSchema
from marketledger.schemas.market import MarketSchema
from marketledger.schemas.resolution import (
    CalculationAuditTrail,
    CommitmentAuditTrail,
    CommitmentPayout,
    FeeBreakdown,
    IdentificationSummary,
    PayoutCalculation,
    UserPayoutSummary,
    VerificationChecks,
)
from marketledger.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


def _floor_fraction(total: int, percentage: float) -> int:
    """total * percentage 의 버림 (float 오차 없이)"""
    value = Decimal(total) * Decimal(str(percentage))
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


class PayoutCalculator:
    def __init__(self, settings: Settings):
        self.settings = settings

    def validate_creator_fee_percentage(self, percentage: float) -> None:
        low = self.settings.MIN_CREATOR_FEE_PERCENTAGE
        high = self.settings.MAX_CREATOR_FEE_PERCENTAGE
        if not (low <= percentage <= high):
            raise ValidationError(
                message=f"Creator fee percentage must be between {low * 100:g}% and {high * 100:g}%",
                details={"creator_fee_percentage": percentage, "min": low, "max": high},
            )

    def calculate_payouts(
        self,
        market: MarketSchema,
        commitments: Sequence[CommitmentSchema],
        winning_option_id: str,
        creator_fee_percentage: float,
    ) -> PayoutCalculation:
        """
        마켓 정산 지급 계획 계산

        Args:
            market: 정산 대상 마켓 (선택지 목록 포함)
            commitments: 정산에 포함할 커밋먼트 (취소된 커밋먼트 제외)
            winning_option_id: 승리 선택지
            creator_fee_percentage: 마켓 생성자 수수료율 (0.01 ~ 0.05)

        Raises:
            OptionNotFoundError: 승리 선택지가 마켓에 없음
            ValidationError: 생성자 수수료율 범위 밖
            NoWinnersError: 커밋먼트는 있지만 승자가 없음 (계산 결과를 함께 전달)
            InvariantViolationError: 검증 체크 실패
        """
        self.validate_creator_fee_percentage(creator_fee_percentage)
        if market.find_option(winning_option_id) is None:
            raise OptionNotFoundError(market.id, winning_option_id)

        calculated_at = utc_now()
        entries = [self._judge(market, c, winning_option_id, calculated_at) for c in commitments]

        total_pool = sum(c.tokens_committed for c in commitments)
        house_fee = _floor_fraction(total_pool, self.settings.HOUSE_FEE_PERCENTAGE)
        creator_fee = _floor_fraction(total_pool, creator_fee_percentage)
        winner_pool = total_pool - house_fee - creator_fee
        winning_tokens = sum(e.tokens_committed for e in entries if e.is_winner)

        for entry in entries:
            if entry.is_winner:
                entry.win_share = entry.tokens_committed / winning_tokens
                entry.payout_amount = winner_pool * entry.tokens_committed // winning_tokens
                entry.profit = entry.payout_amount - entry.tokens_committed
            else:
                entry.profit = -entry.tokens_committed

        total_payout = sum(e.payout_amount for e in entries)
        winner_count = sum(1 for e in entries if e.is_winner)

        calculation = PayoutCalculation(
            market_id=market.id,
            market_type=market.market_type,
            total_options=len(market.options),
            winning_option_id=winning_option_id,
            total_pool=total_pool,
            house_fee=house_fee,
            creator_fee=creator_fee,
            total_fees=house_fee + creator_fee,
            winner_pool=winner_pool,
            winner_count=winner_count,
            loser_count=len(entries) - winner_count,
            total_payout=total_payout,
            unallocated=winner_pool - total_payout,
            commitment_payouts=entries,
            payouts=self._aggregate_by_user(entries),
            fee_breakdown=FeeBreakdown(
                house_fee_percentage=self.settings.HOUSE_FEE_PERCENTAGE,
                creator_fee_percentage=creator_fee_percentage,
                total_fee_percentage=self.settings.HOUSE_FEE_PERCENTAGE + creator_fee_percentage,
                remaining_for_winners=1 - self.settings.HOUSE_FEE_PERCENTAGE - creator_fee_percentage,
            ),
            audit_trail=self._build_audit_trail(commitments, entries, winner_pool, total_payout, calculated_at),
        )

        checks = calculation.audit_trail.verification_checks
        if not checks.passed:
            logger.error(f"Payout verification failed for market {market.id}: {checks.model_dump()}")
            raise InvariantViolationError(
                message=f"Payout verification failed for market {market.id}",
                details={"market_id": market.id, "checks": checks.model_dump()},
            )

        if winner_count == 0 and total_pool > 0:
            logger.warning(
                f"Market {market.id} has no commitments on winning option {winning_option_id}; "
                f"{winner_pool} tokens unallocated"
            )
            raise NoWinnersError(
                message=f"No commitments on winning option {winning_option_id}",
                details={"market_id": market.id, "unallocated": winner_pool},
                calculation=calculation,
            )

        logger.info(
            f"Calculated payouts for market {market.id}: pool={total_pool} fees={house_fee}+{creator_fee} "
            f"winners={winner_count} paid={total_payout} unallocated={calculation.unallocated}"
        )
        return calculation

    def _judge(
        self,
        market: MarketSchema,
        commitment: CommitmentSchema,
        winning_option_id: str,
        calculated_at,
    ) -> CommitmentPayout:
        try:
            target = CommitmentTarget.of(commitment)
        except AmbiguousTargetError:
            raise InvariantViolationError(
                message=f"Commitment {commitment.id} has neither position nor option id",
                details={"commitment_id": commitment.id},
            )
        resolved = target.resolve(market, strict=False)

        return CommitmentPayout(
            commitment_id=commitment.id,
            user_id=commitment.user_id,
            tokens_committed=commitment.tokens_committed,
            odds=commitment.odds,
            is_winner=resolved.option_id == winning_option_id,
            option_id=resolved.option_id,
            position=resolved.position,
            audit_trail=CommitmentAuditTrail(
                commitment_type=target.commitment_type,
                original_position=commitment.position,
                original_option_id=commitment.option_id,
                derived_position=resolved.position,
                derived_option_id=resolved.option_id,
                winner_identification_method=resolved.method,
                calculated_at=calculated_at,
            ),
        )

    def _aggregate_by_user(self, entries: List[CommitmentPayout]) -> List[UserPayoutSummary]:
        grouped: Dict[str, List[CommitmentPayout]] = OrderedDict()
        for entry in entries:
            grouped.setdefault(entry.user_id, []).append(entry)

        summaries = []
        for user_id in sorted(grouped):
            user_entries = grouped[user_id]
            staked = sum(e.tokens_committed for e in user_entries)
            payout = sum(e.payout_amount for e in user_entries)
            summaries.append(
                UserPayoutSummary(
                    user_id=user_id,
                    tokens_staked=staked,
                    payout_amount=payout,
                    profit=payout - staked,
                    win_share=sum(e.win_share for e in user_entries),
                )
            )
        return summaries

    def _build_audit_trail(
        self,
        commitments: Sequence[CommitmentSchema],
        entries: List[CommitmentPayout],
        winner_pool: int,
        total_payout: int,
        calculated_at,
    ) -> CalculationAuditTrail:
        input_ids = [c.id for c in commitments]
        output_ids = [e.commitment_id for e in entries]
        winner_count = sum(1 for e in entries if e.is_winner)
        types = [e.audit_trail.commitment_type for e in entries]
        methods = [e.audit_trail.winner_identification_method for e in entries]

        return CalculationAuditTrail(
            calculated_at=calculated_at,
            total_commitments_processed=len(entries),
            binary_commitments=types.count("binary"),
            multi_option_commitments=types.count("multi-option"),
            hybrid_commitments=types.count("hybrid"),
            winner_identification_summary=IdentificationSummary(
                position_based=methods.count(POSITION_BASED),
                option_id_based=methods.count(OPTION_ID_BASED),
                hybrid=methods.count(HYBRID),
            ),
            verification_checks=VerificationChecks(
                all_commitments_processed=sorted(input_ids) == sorted(output_ids),
                payout_sum_within_pool=(
                    total_payout <= winner_pool
                    and (winner_count == 0 or winner_pool - total_payout <= winner_count)
                ),
                no_double_payouts=len(set(output_ids)) == len(output_ids),
                audit_trail_complete=all(
                    e.audit_trail.derived_option_id is not None for e in entries
                ),
            ),
        )
