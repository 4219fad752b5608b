"""SQLAlchemy declarative base and common utilities."""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Integer, Numeric, String
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from checkcore.core.errors import VersionConflictError
from checkcore.core.money import to_decimal


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class FixedDecimal(TypeDecorator):
    """Exact decimal column.

    Uses NUMERIC where the database stores decimals exactly and a
    fixed-point string on SQLite, which would otherwise round-trip
    through binary floats.
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = 10, scale: int = 2):
        super().__init__()
        self.precision = precision
        self.scale = scale
        self._exponent = Decimal(1).scaleb(-scale)

    def load_dialect_impl(self, dialect: Dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(self.precision + 2))
        return dialect.type_descriptor(Numeric(self.precision, self.scale, asdecimal=True))

    def process_bind_param(self, value, dialect: Dialect):
        if value is None:
            return None
        quantized = to_decimal(value).quantize(self._exponent)
        if dialect.name == "sqlite":
            return str(quantized)
        return quantized

    def process_result_value(self, value, dialect: Dialect) -> Optional[Decimal]:
        if value is None:
            return None
        return to_decimal(value).quantize(self._exponent)


def Money() -> FixedDecimal:
    """Currency column: two decimal places."""
    return FixedDecimal(10, 2)


def Rate() -> FixedDecimal:
    """Tax rate column: six decimal places."""
    return FixedDecimal(10, 6)


class VersionMixin:
    """Optimistic locking via a version counter.

    Models using this mixin gain a ``version`` column that starts at 1
    and should be incremented on every update.  Call ``check_version()``
    before mutating to detect concurrent modifications.
    """

    version: Mapped[int] = mapped_column(Integer, default=1, server_default="1", nullable=False)

    def check_version(self, expected: Optional[int]) -> None:
        """Raise VersionConflictError if *expected* doesn't match current version."""
        if expected is not None and expected != self.version:
            raise VersionConflictError(expected, self.version)

    def increment_version(self) -> None:
        """Increment the version counter after a successful update."""
        self.version += 1
