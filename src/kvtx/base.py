"""
SQLModelBase and __DeclarativeMeta metaclass.

Provides a metaclass that accepts ``table_name='...'`` as a class keyword
instead of ``__tablename__``.
"""
from pydantic import ConfigDict
from sqlmodel import SQLModel
from sqlmodel.main import SQLModelMetaclass


class __DeclarativeMeta(SQLModelMetaclass):
    """Metaclass turning the ``table_name`` class keyword into ``__tablename__``."""

    def __new__(cls, name, bases, attrs, **kwargs):
        if 'table_name' in kwargs:
            attrs['__tablename__'] = kwargs.pop('table_name')

        return super().__new__(cls, name, bases, attrs, **kwargs)


class SQLModelBase(SQLModel, metaclass=__DeclarativeMeta):
    """
    Base class for all kvtx models.

    Used both for plain configuration/DTO models and for the SQL storage table.
    """

    model_config = ConfigDict(use_attribute_docstrings=True, validate_by_name=True, extra='forbid')
