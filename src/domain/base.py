"""Shared base model for entities exposed over the API."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Snake_case in Python, camelCase on the wire.

    Database rows (snake_case dicts) validate directly; API payloads accept
    either spelling and are serialized by alias.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
