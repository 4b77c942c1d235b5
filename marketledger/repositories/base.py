from typing import Any, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy.orm import Session

ModelType = TypeVar("ModelType")
SchemaType = TypeVar("SchemaType", bound=BaseModel)


class BaseRepository(Generic[ModelType, SchemaType]):
    """
    원장 리포지토리 공통 베이스

    조회 결과는 항상 pydantic 스키마로 돌려준다. ORM 인스턴스를 직접 다뤄야 하는
    경우(낙관적 락 갱신, 행 잠금)는 각 리포지토리의 *_model 메서드를 사용한다.

    리포지토리는 flush 까지만 수행하고 commit/rollback 은
    UnitOfWork.within_transaction 이 담당한다.
    """

    def __init__(self, model_class: Type[ModelType], schema_class: Type[SchemaType], db: Session):
        self.model_class = model_class
        self.schema_class = schema_class
        self.db = db

    def _to_schema(self, instance: Any) -> Optional[SchemaType]:
        if instance is None:
            return None
        return self.schema_class.model_validate(instance)

    def _to_schemas(self, instances) -> List[SchemaType]:
        return [self.schema_class.model_validate(instance) for instance in instances]

    def _get_model(self, id: Any) -> Optional[ModelType]:
        return self.db.get(self.model_class, id)

    def get_by_id(self, id: Any) -> Optional[SchemaType]:
        return self._to_schema(self._get_model(id))

    def find_one(self, **criteria: Any) -> Optional[SchemaType]:
        """컬럼 값이 모두 일치하는 첫 레코드 (멱등성 체크용)"""
        instance = self.db.query(self.model_class).filter_by(**criteria).first()
        return self._to_schema(instance)

    def create(self, **kwargs) -> ModelType:
        """행 추가 후 flush - DB 제약 위반은 이 시점에 드러난다"""
        instance = self.model_class(**kwargs)
        self.db.add(instance)
        self.db.flush()
        return instance
