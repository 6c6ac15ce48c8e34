"""
Automation schema: triggers, actions and condition blocks.

Action configs are validated per action type at save time so that an
automation that reaches the executor never carries an unknown variant.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field, field_validator, model_validator

from boardflow.schemas import StrictModel, parse_model
from boardflow.schemas.workflow import Condition, Level

TriggerType = Literal[
    "item_created", "item_updated", "item_status_changed", "item_deleted", "item_moved",
    "field_changed", "field_equals", "field_greater_than", "field_less_than",
    "field_contains", "field_is_empty", "field_is_not_empty",
    "date_approaching", "date_passed", "date_equals_today", "date_in_range",
    "approval_submitted", "approval_approved", "approval_rejected", "approval_level_completed",
]

ActionType = Literal[
    "change_status", "update_field", "clear_field", "calculate_formula", "copy_field",
    "assign_user", "send_notification", "notify_users", "notify_assignees",
    "create_item", "move_to_board", "call_webhook", "api_call",
]

FieldOperator = Literal[
    "equals", "not_equals", "contains", "greater_than", "less_than", "is_empty", "is_not_empty",
]

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]

_VALUE_TRIGGERS = {"field_equals", "field_greater_than", "field_less_than", "field_contains"}
_COLUMN_TRIGGERS = _VALUE_TRIGGERS | {
    "field_changed", "field_is_empty", "field_is_not_empty",
    "date_approaching", "date_passed", "date_equals_today", "date_in_range",
}


# ── Triggers ─────────────────────────────────────────────────────────────────

class TriggerConfig(StrictModel):
    column_id: str | None = None
    operator: FieldOperator | None = None
    value: Any = None
    days_before: int | None = Field(default=None, ge=0)
    start_date: str | None = None
    end_date: str | None = None
    level: Level | None = None

    @field_validator("column_id", mode="before")
    @classmethod
    def _column_as_str(cls, v):
        return str(v) if isinstance(v, int) else v


class Trigger(StrictModel):
    type: TriggerType
    config: TriggerConfig | None = None

    @model_validator(mode="after")
    def _check_config(self):
        cfg = self.config or TriggerConfig()
        if self.type in _COLUMN_TRIGGERS and not cfg.column_id:
            raise ValueError(f"trigger '{self.type}' needs config.columnId")
        if self.type in _VALUE_TRIGGERS and cfg.value is None:
            raise ValueError(f"trigger '{self.type}' needs config.value")
        if self.type == "date_in_range" and not (cfg.start_date and cfg.end_date):
            raise ValueError("trigger 'date_in_range' needs config.startDate and config.endDate")
        return self


# ── Action configs ───────────────────────────────────────────────────────────

class _ColumnTarget(StrictModel):
    column_id: str

    @field_validator("column_id", mode="before")
    @classmethod
    def _column_as_str(cls, v):
        return str(v) if isinstance(v, int) else v


class ChangeStatusConfig(StrictModel):
    status: str = Field(min_length=1)


class UpdateFieldConfig(_ColumnTarget):
    value: Any


class ClearFieldConfig(_ColumnTarget):
    pass


class CalculateFormulaConfig(_ColumnTarget):
    formula: str = Field(min_length=1)


class CopyFieldConfig(_ColumnTarget):
    source_column_id: str

    @field_validator("source_column_id", mode="before")
    @classmethod
    def _source_as_str(cls, v):
        return str(v) if isinstance(v, int) else v


class AssignUserConfig(_ColumnTarget):
    user_ids: list[str]

    @field_validator("user_ids", mode="before")
    @classmethod
    def _listify(cls, v):
        return v if isinstance(v, list) else [v]


class NotifyUsersConfig(StrictModel):
    user_ids: list[str] = Field(min_length=1)
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    link: str | None = None

    @field_validator("user_ids", mode="before")
    @classmethod
    def _listify(cls, v):
        return v if isinstance(v, list) else [v]


class NotifyAssigneesConfig(StrictModel):
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    link: str | None = None


class CreateItemConfig(StrictModel):
    target_board_id: int
    item_name: str | None = None
    status: str | None = None
    copy_cells: bool = False


class MoveToBoardConfig(StrictModel):
    target_board_id: int


class WebhookConfig(StrictModel):
    webhook_url: str = Field(pattern=r"^https?://")
    webhook_method: HttpMethod = "POST"
    webhook_headers: dict[str, str] = Field(default_factory=dict)
    webhook_body: dict[str, Any] | None = None


class ApiCallConfig(StrictModel):
    api_url: str = Field(pattern=r"^https?://")
    api_method: HttpMethod = "POST"
    api_headers: dict[str, str] = Field(default_factory=dict)
    api_body: dict[str, Any] | None = None


ACTION_CONFIG_MODELS = {
    "change_status": ChangeStatusConfig,
    "update_field": UpdateFieldConfig,
    "clear_field": ClearFieldConfig,
    "calculate_formula": CalculateFormulaConfig,
    "copy_field": CopyFieldConfig,
    "assign_user": AssignUserConfig,
    "send_notification": NotifyUsersConfig,
    "notify_users": NotifyUsersConfig,
    "notify_assignees": NotifyAssigneesConfig,
    "create_item": CreateItemConfig,
    "move_to_board": MoveToBoardConfig,
    "call_webhook": WebhookConfig,
    "api_call": ApiCallConfig,
}


class Action(StrictModel):
    type: ActionType
    config: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_config(self):
        model_cls = ACTION_CONFIG_MODELS[self.type]
        self.config = model_cls.model_validate(self.config).to_json()
        return self


# ── Condition blocks ─────────────────────────────────────────────────────────

class BlockLeaf(StrictModel):
    field: str = Field(min_length=1)
    operator: FieldOperator
    value: Any = None


class ConditionBlock(StrictModel):
    type: Literal["and", "or"]
    conditions: list[BlockLeaf] = Field(default_factory=list)


def normalize_conditions(raw) -> dict | None:
    """Accept a condition block or a Condition tree; return a tree or None.

    An empty block means "no conditions" and normalizes to None.
    """
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValueError("conditions must be an object")
    leaves = raw.get("conditions") or []
    is_block = raw.get("type") in ("and", "or") and all(
        isinstance(c, dict) and "operator" in c for c in leaves
    )
    if is_block:
        block = ConditionBlock.model_validate(raw)
        if not block.conditions:
            return None
        return {
            "type": block.type,
            "conditions": [
                {"type": leaf.operator, "field": leaf.field, "value": leaf.value}
                for leaf in block.conditions
            ],
        }
    return Condition.model_validate(raw).to_json()


# ── Automation payloads ──────────────────────────────────────────────────────

class AutomationCreate(StrictModel):
    board_id: int
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    trigger: Trigger
    actions: list[Action] = Field(min_length=1)
    conditions: dict[str, Any] | None = None
    is_active: bool = True

    @field_validator("conditions", mode="after")
    @classmethod
    def _normalize(cls, v):
        return normalize_conditions(v)


class AutomationUpdate(StrictModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    trigger: Trigger | None = None
    actions: list[Action] | None = Field(default=None, min_length=1)
    conditions: dict[str, Any] | None = None
    is_active: bool | None = None

    @field_validator("conditions", mode="after")
    @classmethod
    def _normalize(cls, v):
        return normalize_conditions(v)


def parse_automation_create(payload) -> AutomationCreate:
    return parse_model(AutomationCreate, payload, message="Invalid automation")


def parse_automation_update(payload) -> AutomationUpdate:
    return parse_model(AutomationUpdate, payload, message="Invalid automation update")
