"""Shared pydantic base for payloads exchanged with the campground platform."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Model serialized with camelCase keys on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict:
        """Dump with camelCase aliases, dropping unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
