"""Column types shared by the cast tables."""

import json

from sqlalchemy import Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator

from depthcaster.schemas.cast import CastData


class CastPayload(TypeDecorator):
    """Stores a ``CastData`` snapshot and loads it back validated.

    JSONB on PostgreSQL, JSON text elsewhere. Decoding happens here rather
    than in the driver, so a row whose payload cannot be decoded loads as
    ``None`` instead of failing the whole query.
    """

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        cast = CastData.parse(value)
        if cast is None:
            raise ValueError("cast payload must contain at least a hash")
        if dialect.name == "postgresql":
            return cast.to_payload()
        return json.dumps(cast.to_payload())

    def process_result_value(self, value, dialect):
        return CastData.parse(value)
