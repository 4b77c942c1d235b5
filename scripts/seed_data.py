"""
데모 데이터 시드 스크립트
binary 마켓 1개, multi-option 마켓 1개와 토큰을 발행한 데모 사용자 3명을 만든다.
"""

import sys
import os

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import timedelta  # noqa: E402

from marketledger.containers import Container  # noqa: E402
from marketledger.core.exceptions import MarketNotFoundError  # noqa: E402
from marketledger.schemas.balance import TokenPurchaseRequest  # noqa: E402
from marketledger.schemas.market import MarketCreateRequest, MarketOptionCreate  # noqa: E402
from marketledger.utils.timezone_utils import utc_now  # noqa: E402

DEMO_USERS = [("demo-alice", 1000), ("demo-bob", 1000), ("demo-carol", 500)]

DEMO_MARKETS = [
    ("demo-btc-100k", "BTC 가 이번 주 100k 위에서 마감할까?", [("yes", "예"), ("no", "아니오")]),
    (
        "demo-fomc",
        "다음 FOMC 기준금리 결정은?",
        [("cut", "인하"), ("hold", "동결"), ("hike", "인상")],
    ),
]


def seed_demo_data():
    """데모 마켓/사용자 시드 (이미 있는 마켓은 건너뜀, 발행은 reference_id 로 1회만 반영)"""
    container = Container()
    market_service = container.services.market_service()
    ledger = container.services.balance_ledger()

    created = 0
    for market_id, title, options in DEMO_MARKETS:
        try:
            market_service.get_market(market_id)
            print(f"⏭️  이미 존재하는 마켓: {market_id}")
            continue
        except MarketNotFoundError:
            pass
        market_service.create_market(
            MarketCreateRequest(
                market_id=market_id,
                title=title,
                options=[MarketOptionCreate(id=option_id, text=text) for option_id, text in options],
                ends_at=utc_now() + timedelta(days=7),
                created_by="seed",
            )
        )
        created += 1

    for user_id, amount in DEMO_USERS:
        balance = ledger.purchase(
            TokenPurchaseRequest(
                user_id=user_id,
                amount=amount,
                reference_id=f"seed:{user_id}",
                reason="demo seed",
            )
        )
        print(f"   {user_id}: available={balance.available_tokens}")

    print(f"✅ 데모 시드 완료: 마켓 {created}개 생성, 사용자 {len(DEMO_USERS)}명")


if __name__ == "__main__":
    seed_demo_data()
