from datetime import datetime, timezone

import pytest

from marketledger.core.exceptions import AmbiguousTargetError, OptionNotFoundError
from marketledger.core.targeting import (
    HYBRID,
    OPTION_ID_BASED,
    POSITION_BASED,
    CommitmentTarget,
)
from marketledger.models.commitment import PositionEnum
from marketledger.models.market import MarketStatusEnum
from marketledger.schemas.market import MarketOptionSchema, MarketSchema


def _market(*option_ids: str) -> MarketSchema:
    return MarketSchema(
        id="m-1",
        title="Test market",
        status=MarketStatusEnum.ACTIVE,
        options=[MarketOptionSchema(id=o, text=o.upper()) for o in option_ids],
        ends_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def binary_market():
    return _market("up", "down")


@pytest.fixture
def multi_market():
    return _market("red", "green", "blue")


class TestCommitmentTargetConstruction:
    """주소 필드 정규화 테스트"""

    def test_requires_at_least_one_field(self):
        """position, option_id 모두 없으면 AmbiguousTarget"""
        with pytest.raises(AmbiguousTargetError):
            CommitmentTarget.from_fields(None, None)

    def test_empty_option_id_is_treated_as_missing(self):
        with pytest.raises(AmbiguousTargetError):
            CommitmentTarget.from_fields(None, "")

    def test_invalid_position_string(self):
        with pytest.raises(AmbiguousTargetError):
            CommitmentTarget.from_fields("maybe", None)

    def test_position_string_is_normalized(self):
        target = CommitmentTarget.from_fields("YES", None)
        assert target.position == PositionEnum.YES
        assert target.kind == "position"
        assert target.commitment_type == "binary"

    def test_kinds(self):
        assert CommitmentTarget.from_fields(None, "red").commitment_type == "multi-option"
        assert CommitmentTarget.from_fields(PositionEnum.NO, "red").commitment_type == "hybrid"


class TestBinaryMarketResolution:
    """선택지 2개 마켓: position 우선"""

    def test_yes_maps_to_first_option(self, binary_market):
        resolved = CommitmentTarget.from_fields(PositionEnum.YES, None).resolve(binary_market)

        assert resolved.option_id == "up"
        assert resolved.position == PositionEnum.YES
        assert resolved.method == POSITION_BASED

    def test_no_maps_to_second_option(self, binary_market):
        target = CommitmentTarget.from_fields(PositionEnum.NO, None)

        assert target.resolve_option_id(binary_market) == "down"
        assert target.resolve_position(binary_market) == PositionEnum.NO

    def test_option_id_only_derives_position(self, binary_market):
        resolved = CommitmentTarget.from_fields(None, "down").resolve(binary_market)

        assert resolved.position == PositionEnum.NO
        assert resolved.method == OPTION_ID_BASED

    def test_agreeing_fields_are_hybrid(self, binary_market):
        resolved = CommitmentTarget.from_fields(PositionEnum.YES, "up").resolve(binary_market)

        assert resolved.option_id == "up"
        assert resolved.method == HYBRID
        assert resolved.override_warning is None

    def test_disagreeing_option_id_is_overridden_by_position(self, binary_market):
        """binary 마켓에서 position 과 다른 option_id 는 position 기준으로 덮어쓴다"""
        resolved = CommitmentTarget.from_fields(PositionEnum.NO, "up").resolve(binary_market)

        assert resolved.option_id == "down"
        assert resolved.position == PositionEnum.NO
        assert resolved.override_warning is not None

    def test_unknown_option_id_strict(self, binary_market):
        with pytest.raises(OptionNotFoundError):
            CommitmentTarget.from_fields(None, "sideways").resolve(binary_market)


class TestMultiOptionMarketResolution:
    """선택지 3개 이상 마켓: option_id 우선"""

    def test_option_id_is_authoritative(self, multi_market):
        resolved = CommitmentTarget.from_fields(None, "blue").resolve(multi_market)

        assert resolved.option_id == "blue"
        assert resolved.position == PositionEnum.NO
        assert resolved.method == OPTION_ID_BASED

    def test_first_option_derives_yes(self, multi_market):
        resolved = CommitmentTarget.from_fields(None, "red").resolve(multi_market)
        assert resolved.position == PositionEnum.YES

    def test_position_only_falls_back_to_first_two_options(self, multi_market):
        assert CommitmentTarget.from_fields(PositionEnum.YES, None).resolve_option_id(multi_market) == "red"
        assert CommitmentTarget.from_fields(PositionEnum.NO, None).resolve_option_id(multi_market) == "green"

    def test_disagreeing_position_is_rederived(self, multi_market):
        """position=yes 이지만 option_id 가 세 번째 선택지면 option_id 를 따르고 position 은 no"""
        resolved = CommitmentTarget.from_fields(PositionEnum.YES, "blue").resolve(multi_market)

        assert resolved.option_id == "blue"
        assert resolved.position == PositionEnum.NO
        assert resolved.override_warning is not None

    def test_unknown_option_id_strict(self, multi_market):
        with pytest.raises(OptionNotFoundError):
            CommitmentTarget.from_fields(None, "purple").resolve(multi_market)

    def test_unknown_option_id_lenient(self, multi_market):
        """저장된 레코드 읽기(strict=False)에서는 오류 대신 원래 option_id 를 유지한다"""
        resolved = CommitmentTarget.from_fields(None, "purple").resolve(multi_market, strict=False)

        assert resolved.option_id == "purple"
        assert resolved.position == PositionEnum.NO

    def test_market_needs_two_options(self):
        with pytest.raises(AmbiguousTargetError):
            CommitmentTarget.from_fields(None, "only").resolve(_market("only"))
