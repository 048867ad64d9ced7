import json
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator
from typing import List, Optional
from datetime import datetime
from cradle.core.models import PriorityRuleType
from cradle.core.exceptions import ValidationError


class TimeOnListConditions(BaseModel):
    min_days: int = Field(30, alias='minDays', ge=0)
    max_days: int = Field(365, alias='maxDays', ge=0)

    class Config:
        populate_by_name = True

    @model_validator(mode='after')
    def check_range(self):
        if self.min_days > self.max_days:
            raise ValueError('minDays must not exceed maxDays')
        return self


class ProviderCustomConditions(BaseModel):
    required_tags: List[str] = Field(default_factory=list, alias='requiredTags')

    class Config:
        populate_by_name = True


CONDITION_MODELS = {
    PriorityRuleType.TIME_ON_LIST: TimeOnListConditions,
    PriorityRuleType.PROVIDER_CUSTOM: ProviderCustomConditions,
}


def parse_conditions(rule_type, raw):
    """Turn stored rule conditions into their typed model.

    Rule types without conditions yield None. A JSON string is accepted
    for rows written by older clients.
    """
    model = CONDITION_MODELS.get(rule_type)
    if model is None:
        return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw) if raw.strip() else None
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid JSON in rule conditions: {e}") from e
    try:
        return model.model_validate(raw or {})
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid conditions for {rule_type.value}: {e}") from e


class PriorityRule(BaseModel):
    id: Optional[int] = None
    daycare_id: int
    program_id: Optional[int] = None
    name: str
    description: Optional[str] = None
    rule_type: PriorityRuleType
    points: int
    is_active: bool = True
    sort_order: int = 0
    conditions: Optional[dict] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CreateRuleRequest(BaseModel):
    daycare_id: int
    program_id: Optional[int] = None
    name: str
    description: Optional[str] = None
    rule_type: PriorityRuleType
    points: int
    is_active: bool = True
    sort_order: int = 0
    conditions: Optional[dict] = None
