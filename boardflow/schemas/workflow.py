"""
Approval workflow configuration schema.

    WorkflowConfig
      ├── levels: LevelConfig[]   (LEVEL_1..LEVEL_3, unique, kept in level order)
      └── rules:  ApprovalRule[]  (condition tree + one routing action)
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field, model_validator

from boardflow.models.approval import APPROVAL_LEVELS
from boardflow.schemas import StrictModel, parse_model

Level = Literal["LEVEL_1", "LEVEL_2", "LEVEL_3"]

CONDITION_TYPES = ("equals", "greater_than", "less_than", "contains", "in", "and", "or")
# Automation condition blocks also use these leaf operators
EXTENDED_LEAF_TYPES = ("not_equals", "is_empty", "is_not_empty")

ConditionType = Literal[
    "equals", "greater_than", "less_than", "contains", "in", "and", "or",
    "not_equals", "is_empty", "is_not_empty",
]


class Condition(StrictModel):
    type: ConditionType
    field: str | None = None
    value: Any = None
    conditions: list[Condition] | None = None

    @model_validator(mode="after")
    def _check_shape(self):
        if self.type in ("and", "or"):
            if self.conditions is None:
                self.conditions = []
        elif not self.field:
            raise ValueError(f"'{self.type}' condition requires a field")
        return self

    def uses_extended_types(self) -> bool:
        if self.type in EXTENDED_LEAF_TYPES:
            return True
        return any(c.uses_extended_types() for c in self.conditions or [])


class LevelConfig(StrictModel):
    level: Level
    name: str = ""
    approvers: list[str] = Field(default_factory=list)
    is_optional: bool = False
    is_parallel: bool = False
    required_approvals: int | None = Field(default=None, ge=1)
    timeout_hours: float | None = Field(default=None, gt=0)
    escalation_user_id: str | None = None


class RuleAction(StrictModel):
    type: Literal["require_level", "skip_level", "auto_approve", "assign_approver"]
    level: Level | None = None
    skip_to_level: Level | None = None
    approver_ids: list[str] | None = None

    @model_validator(mode="after")
    def _check_payload(self):
        if self.type == "require_level" and not self.level:
            raise ValueError("require_level needs 'level'")
        if self.type == "skip_level" and not self.skip_to_level:
            raise ValueError("skip_level needs 'skipToLevel'")
        if self.type == "assign_approver" and (not self.level or not self.approver_ids):
            raise ValueError("assign_approver needs 'level' and 'approverIds'")
        return self


class ApprovalRule(StrictModel):
    id: str
    name: str
    type: Literal["amount", "status", "custom"] = "custom"
    condition: Condition
    action: RuleAction
    priority: int = 0
    enabled: bool = True

    @model_validator(mode="after")
    def _check_condition_types(self):
        if self.condition.uses_extended_types():
            raise ValueError(
                f"rule conditions support only: {', '.join(CONDITION_TYPES)}"
            )
        return self


class WorkflowConfig(StrictModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    levels: list[LevelConfig] = Field(min_length=1)
    rules: list[ApprovalRule] = Field(default_factory=list)

    @model_validator(mode="after")
    def _order_levels(self):
        seen = [lv.level for lv in self.levels]
        if len(seen) != len(set(seen)):
            raise ValueError("each level may be configured only once")
        self.levels = sorted(self.levels, key=lambda lv: APPROVAL_LEVELS.index(lv.level))
        return self

    def level_config(self, level: str) -> LevelConfig | None:
        for lv in self.levels:
            if lv.level == level:
                return lv
        return None


Condition.model_rebuild()


def parse_workflow_config(payload) -> WorkflowConfig:
    return parse_model(WorkflowConfig, payload, message="Invalid workflow configuration")
