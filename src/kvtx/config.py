"""
Transaction configuration and reserved names.

The reserved names below form the namespace kvtx writes into stored items.
Callers must not set them directly.
"""
from sqlmodel import Field

from kvtx.base import SQLModelBase

VERSION_ATTRIBUTE = '_version'
"""Item attribute holding the optimistic lock version."""

TX_ID_ATTRIBUTE = '_tx_id'
TX_LOCKED_AT_ATTRIBUTE = '_tx_locked_at'
TX_IS_TRANSIENT_ATTRIBUTE = '_tx_is_transient'
TX_IS_APPLIED_ATTRIBUTE = '_tx_is_applied'

TX_ATTRIBUTES = (
    TX_ID_ATTRIBUTE,
    TX_LOCKED_AT_ATTRIBUTE,
    TX_IS_TRANSIENT_ATTRIBUTE,
    TX_IS_APPLIED_ATTRIBUTE,
)
"""Transaction bookkeeping attributes, in the order they are removed on unlock."""

TX_ATTRIBUTE_PREFIX = '_tx_'

VERSION_NAME_PLACEHOLDER = '#_version'
PREVIOUS_VERSION_PLACEHOLDER = ':_previous_version'
NEXT_VERSION_PLACEHOLDER = ':_next_version'

RESERVED_PLACEHOLDERS = frozenset({
    VERSION_NAME_PLACEHOLDER,
    PREVIOUS_VERSION_PLACEHOLDER,
    NEXT_VERSION_PLACEHOLDER,
})

DEFAULT_IMAGE_TABLE_NAME = 'TransactionImages'


def is_reserved_attribute(name: str) -> bool:
    """Whether an attribute name belongs to the kvtx namespace."""
    return name == VERSION_ATTRIBUTE or name.startswith(TX_ATTRIBUTE_PREFIX)


class TransactionConfig(SQLModelBase):
    """
    Settings shared by the participants of a transaction.

    Example::

        config = TransactionConfig(image_table_name="OrderImages")
        adapter.define_table(config.image_table_name, config.image_key_attributes)
    """

    image_table_name: str = Field(default=DEFAULT_IMAGE_TABLE_NAME, min_length=1)
    """Table holding pre-lock item images."""

    image_key_attributes: tuple[str, str] = ('tx_id', 'image_id')
    """Key attributes of the image table: (transaction id, image id)."""


class Transaction(SQLModelBase):
    """
    Opaque transaction handle.

    kvtx does not generate or manage transaction ids; the orchestrator
    supplies one per transaction.
    """

    id: str = Field(min_length=1)
    """Transaction identifier."""
