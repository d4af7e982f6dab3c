"""Shared schema base class for engine records and API responses."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Record model that speaks camelCase on the wire and snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_payload(self) -> dict:
        """Dump a JSON-compatible camelCase dict."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
