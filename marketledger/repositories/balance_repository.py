from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from marketledger.models.balance import UserBalance
from marketledger.repositories.base import BaseRepository
from marketledger.schemas.balance import UserBalanceSchema
from marketledger.utils.timezone_utils import utc_now


class BalanceRepository(BaseRepository[UserBalance, UserBalanceSchema]):
    """잔액 행 접근 - BalanceLedger 외에는 사용하지 않는다"""

    def __init__(self, db: Session):
        super().__init__(UserBalance, UserBalanceSchema, db)

    def get_model(self, user_id: str) -> Optional[UserBalance]:
        return self._get_model(user_id)

    def get_or_create_model(self, user_id: str) -> UserBalance:
        """
        잔액 행을 조회하고, 없으면 0 잔액(version 1)으로 생성

        다른 작업 단위가 같은 사용자의 행을 먼저 INSERT 하면 PK 충돌이 난다.
        이 경우 StaleDataError 로 바꿔 UnitOfWork 가 새 세션에서 다시 실행하게 하고,
        재시도에서는 이미 생성된 행을 읽는다.
        """
        balance = self._get_model(user_id)
        if balance is not None:
            return balance

        # version 은 INSERT 시 SQLAlchemy 가 1로 설정한다
        try:
            return self.create(
                user_id=user_id,
                available_tokens=0,
                committed_tokens=0,
                total_earned=0,
                total_spent=0,
                last_updated=utc_now(),
            )
        except IntegrityError as e:
            raise StaleDataError(f"balance row for {user_id} was created concurrently") from e

    def list_user_ids(self) -> List[str]:
        rows = self.db.query(UserBalance.user_id).order_by(UserBalance.user_id.asc()).all()
        return [row[0] for row in rows]

    def list_all(self) -> List[UserBalanceSchema]:
        instances = self.db.query(UserBalance).order_by(UserBalance.user_id.asc()).all()
        return self._to_schemas(instances)

    def to_schema(self, balance: UserBalance) -> UserBalanceSchema:
        return self._to_schema(balance)  # type: ignore[return-value]
