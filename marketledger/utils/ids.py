import uuid


def new_id() -> str:
    """레코드 식별자 (uuid4 hex)"""
    return uuid.uuid4().hex
