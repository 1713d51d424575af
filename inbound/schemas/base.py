"""
Schema base classes.

Attributes are snake_case in Python and camelCase on the wire. Input accepts
both spellings; FastAPI renders responses by alias. Anything built from an
ORM row derives from BaseResponseSchema so ``from_attributes`` is on.
"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseResponseSchema(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    # Unknown keys are dropped so older clients keep working
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class BaseUpdateSchema(BaseCreateSchema):
    """Partial update body; services read it with ``model_dump(exclude_unset=True)``."""
