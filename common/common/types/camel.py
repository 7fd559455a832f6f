from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """API 경계용 베이스 모델. JSON 필드명은 camelCase, 파이썬 쪽은 snake_case 를 쓴다."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
