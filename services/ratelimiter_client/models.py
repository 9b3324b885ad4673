from __future__ import annotations

import importlib
import re
from datetime import timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .errors import ValidationFailure


DEFAULT_DURATION = timedelta(seconds=1)

# "<integer>/<unit>": s = second, m = minute, h = hour, d = day
RATE_EXPRESSION = re.compile(r"\d+/[smhd]")


class Operator(str, Enum):
    NONE = "NONE"
    AND = "AND"
    OR = "OR"


def _resolvable(dotted: str) -> bool:
    module_name, _, attr = dotted.rpartition(".")
    if not module_name:
        return False
    try:
        module = importlib.import_module(module_name)
    except ImportError:
        return False
    return hasattr(module, attr)


class RateLimit(BaseModel):
    """One quota: either a rate expression such as ``"5/m"`` or permits per duration."""

    model_config = ConfigDict(populate_by_name=True)

    rate: str | None = ""
    permits: int = 0
    duration: timedelta = DEFAULT_DURATION
    condition: str | None = Field("", alias="when")
    factory_class: str | None = Field("", alias="factoryClass")

    @field_validator("rate", mode="before")
    @classmethod
    def _strip_rate(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    def validate_limit(self) -> None:
        has_rate = bool(self.rate)
        if not has_rate and self.permits < 1:
            raise ValidationFailure("Specify either rate or permits.")
        if has_rate and self.permits > 0:
            raise ValidationFailure("Specify either rate or permits, not both.")
        if has_rate and not RATE_EXPRESSION.fullmatch(self.rate):  # type: ignore[union-attr]
            raise ValidationFailure(f"Invalid rate: {self.rate}, expected <integer>/<s|m|h|d>")
        if self.factory_class and not _resolvable(self.factory_class):
            raise ValidationFailure(f"Invalid factoryClass: {self.factory_class}")


class RateRule(BaseModel):
    """A named group of rate limits registered on the service."""

    model_config = ConfigDict(populate_by_name=True)

    parent_id: str | None = Field(None, alias="parentId")
    id: str | None = None
    operator: Operator = Operator.NONE
    sub_rates: list[RateLimit] = Field(default_factory=list, alias="rates")
    condition: str | None = Field(None, alias="when")

    @field_validator("operator", mode="before")
    @classmethod
    def _operator_default(cls, v: Any) -> Any:
        return Operator.NONE if v is None else v

    @field_validator("sub_rates", mode="before")
    @classmethod
    def _rates_default(cls, v: Any) -> Any:
        return [] if v is None else v

    @classmethod
    def of(
        cls, rate_id: str, rate: str, condition: str | None = None, parent_id: str | None = None
    ) -> RateRule:
        limit = RateLimit(rate=rate, condition=condition or "")
        return cls(parent_id=parent_id, id=rate_id, sub_rates=[limit])

    def validate_rule(self) -> None:
        if not self.id:
            raise ValidationFailure("RateRule#id is required.")
        if not self.sub_rates:
            raise ValidationFailure("RateRule#rates is required.")
        if self.operator is Operator.NONE and len(self.sub_rates) > 1:
            raise ValidationFailure("RateRule#operator is required, when there are more than one rates.")
        for limit in self.sub_rates:
            limit.validate_limit()

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RequestSnapshot(BaseModel):
    """Serializable capture of an inbound request, evaluated by rate conditions server-side.

    Frozen at the top level only: fields cannot be reassigned, but the header,
    cookie, attribute and parameter maps are plain dicts. Builders hand out a
    fresh snapshot per request, so nothing shares those maps.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    method: str | None = None
    headers: dict[str, tuple[str, ...]] | None = None
    attributes: dict[str, str | None] | None = None
    auth_type: str | None = None
    character_encoding: str | None = None
    context_path: str | None = None
    cookies: dict[str, str] | None = None
    locales: tuple[str, ...] | None = None
    parameters: dict[str, tuple[str, ...]] | None = None
    remote_addr: str | None = None
    request_uri: str | None = None
    servlet_path: str | None = None
    session_id: str | None = None
    user_principal: str | None = None
    # Role membership cannot be enumerated from a request, so it is never sent
    user_roles: tuple[str, ...] | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
