"""
Write action payloads. Each action type has one model; action_data is
validated against it when the pending action is created and again just
before execution.
"""

import datetime
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from .errors import InvalidAction
from .money import to_minor

FEE_TYPES = ['monthly', 'yearly', 'one-time']
ATTENDANCE_STATUSES = ['present', 'absent', 'late', 'excused']


def _amount(v, allow_zero: bool = False):
    """Money arrives as int, Decimal or numeric string; floats are refused."""
    if v is None:
        return v
    if isinstance(v, (float, bool)):
        raise ValueError('amount must be a whole number or decimal string, not a float')
    try:
        minor = to_minor(v)
    except TypeError as e:
        raise ValueError(str(e))
    if minor < 0 or (minor == 0 and not allow_zero):
        raise ValueError('amount must be positive')
    return Decimal(minor) / 100


class ActionPayload(BaseModel):
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)


class AddStudent(ActionPayload):
    name: str
    class_name: Optional[str] = None
    fee_amount: Decimal = Decimal(0)
    fee_type: str = 'monthly'
    join_date: Optional[date] = None

    @field_validator('name')
    @classmethod
    def name_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('name cannot be empty')
        return v

    @field_validator('fee_amount', mode='before')
    @classmethod
    def fee_amount_must_be_exact(cls, v):
        return _amount(v, allow_zero=True)

    @field_validator('fee_type')
    @classmethod
    def fee_type_must_be_valid(cls, v):
        if v not in FEE_TYPES:
            raise ValueError(f'fee_type must be one of: {FEE_TYPES}')
        return v


class UpdateStudent(ActionPayload):
    student_id: str
    name: Optional[str] = None
    class_name: Optional[str] = None
    fee_amount: Optional[Decimal] = None
    fee_type: Optional[str] = None
    join_date: Optional[date] = None
    is_archived: Optional[bool] = None

    @field_validator('fee_amount', mode='before')
    @classmethod
    def fee_amount_must_be_exact(cls, v):
        return _amount(v, allow_zero=True)

    @field_validator('fee_type')
    @classmethod
    def fee_type_must_be_valid(cls, v):
        if v is not None and v not in FEE_TYPES:
            raise ValueError(f'fee_type must be one of: {FEE_TYPES}')
        return v

    @model_validator(mode='after')
    def must_change_something(self):
        if not self.changes():
            raise ValueError('update_student needs at least one field to change')
        return self

    def changes(self) -> Dict[str, Any]:
        return {k: v for k, v in self.model_dump(exclude={'student_id'}).items() if v is not None}


class AddPayment(ActionPayload):
    student_id: str
    amount: Decimal
    paid_on: date
    method: Optional[str] = None

    @field_validator('amount', mode='before')
    @classmethod
    def amount_must_be_exact(cls, v):
        return _amount(v)


class AddExpense(ActionPayload):
    category: str
    amount: Decimal
    spent_on: date
    description: Optional[str] = None

    @field_validator('category')
    @classmethod
    def category_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('category cannot be empty')
        return v

    @field_validator('amount', mode='before')
    @classmethod
    def amount_must_be_exact(cls, v):
        return _amount(v)


class UpdateAttendance(ActionPayload):
    student_id: str
    date: datetime.date
    status: str

    @field_validator('status')
    @classmethod
    def status_must_be_valid(cls, v):
        v = v.lower()
        if v not in ATTENDANCE_STATUSES:
            raise ValueError(f'status must be one of: {ATTENDANCE_STATUSES}')
        return v


class DeactivateMember(ActionPayload):
    user_id: str


ACTION_MODELS = {
    'add_student': AddStudent,
    'update_student': UpdateStudent,
    'add_payment': AddPayment,
    'add_expense': AddExpense,
    'update_attendance': UpdateAttendance,
    'deactivate_member': DeactivateMember,
}


def parse_action(action_type: str, action_data: Dict[str, Any]) -> ActionPayload:
    """Validate action_data for its type, raising InvalidAction on any mismatch."""
    model = ACTION_MODELS.get(action_type)
    if model is None:
        raise InvalidAction(f"Unknown action type: {action_type}",
                            {"supported": sorted(ACTION_MODELS)})
    if not isinstance(action_data, dict):
        raise InvalidAction("action_data must be an object")
    try:
        return model.model_validate(action_data)
    except ValidationError as e:
        raise InvalidAction(f"Invalid {action_type} payload",
                            {"errors": e.errors(include_url=False, include_context=False, include_input=False)})


def normalize_action(action_type: str, action_data: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-safe canonical form of a validated payload (amounts as strings)."""
    return parse_action(action_type, action_data).model_dump(mode='json', exclude_none=True)
