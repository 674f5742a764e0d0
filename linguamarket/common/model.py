from datetime import datetime
from typing import Annotated

import sqlalchemy as sa

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Dialect
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, MappedAsDataclass, declared_attr, mapped_column

from linguamarket.utils.timezone import timezone

# Generic primary key
id_key = Annotated[
    int,
    mapped_column(
        primary_key=True,
        index=True,
        autoincrement=True,
        sort_order=-999,
        comment='Primary key ID',
    ),
]

# JSON document column, JSONB on PostgreSQL
JSONDocument = sa.JSON().with_variant(JSONB(), 'postgresql')


class TimeZone(sa.TypeDecorator[datetime]):
    """Timezone-aware datetime column, values are stored and returned in UTC"""

    impl = sa.DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        return timezone.to_utc(value)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        return timezone.to_utc(value)


class DateTimeMixin(MappedAsDataclass):
    """Datetime mixin"""

    created_time: Mapped[datetime] = mapped_column(
        TimeZone,
        init=False,
        default_factory=timezone.now,
        sort_order=999,
        comment='Created time',
    )
    updated_time: Mapped[datetime | None] = mapped_column(
        TimeZone,
        init=False,
        default=None,
        onupdate=timezone.now,
        sort_order=999,
        comment='Updated time',
    )


class MappedBase(AsyncAttrs, DeclarativeBase):
    """
    Declarative base class

    `DeclarativeBase <https://docs.sqlalchemy.org/en/20/orm/declarative_config.html>`__
    `mapped_column() <https://docs.sqlalchemy.org/en/20/orm/mapping_api.html#sqlalchemy.orm.mapped_column>`__
    """

    @declared_attr.directive
    def __table_args__(cls) -> dict:
        return {'comment': cls.__doc__ or ''}


class DataClassBase(MappedAsDataclass, MappedBase):
    """
    Declarative dataclass base class

    `MappedAsDataclass <https://docs.sqlalchemy.org/en/20/orm/dataclasses.html#orm-declarative-native-dataclasses>`__
    """

    __abstract__ = True


class Base(DataClassBase, DateTimeMixin):
    """Declarative dataclass base class with created/updated time columns"""

    __abstract__ = True
