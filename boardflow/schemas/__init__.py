"""
Pydantic request/config schemas.

Every configuration payload is validated strictly (``extra="forbid"`` and
literal type tags) before it is persisted. ``parse_model`` turns pydantic's
error list into the service-layer ValidationError.
"""

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from boardflow.core.exceptions import ValidationError


class StrictModel(BaseModel):
    """camelCase on the wire, snake_case in Python, unknown keys rejected."""

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


def parse_model(model_cls, payload, message="Invalid payload"):
    """Validate ``payload`` against ``model_cls`` or raise ValidationError."""
    if not isinstance(payload, dict):
        raise ValidationError(message, details={"body": "must be a JSON object"})
    try:
        return model_cls.model_validate(payload)
    except PydanticValidationError as exc:
        details = {}
        for err in exc.errors():
            loc = ".".join(str(p) for p in err.get("loc", ())) or "body"
            details[loc] = err.get("msg", "invalid")
        raise ValidationError(message, details=details) from exc
