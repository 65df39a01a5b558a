"""
Transaction Participant

One item's involvement in one transaction. The participant drives the item
through an explicit protocol on top of two optimistic locks, one on the item
and one on its image record:

1. ``lock()``   -- mark the item as owned by the transaction, saving an image
   of its current state (or creating a transient placeholder if absent)
2. ``apply()``  -- perform the requested mutation while keeping ownership
3. ``unlock()`` -- commit: strip the ownership markers (or delete the item
   for a delete operation)
4. ``rollback()`` -- abort: delete a transient item, strip the markers of an
   unapplied one, or restore the saved image

Locking is data-plane only: ownership lives in the item's ``_tx_*``
attributes and every step is a version-conditioned write, so concurrent
contenders are arbitrated by the store.

Usage::

    participant = TransactionParticipant(storage, tx, ItemRef(storage, "Orders", {"id": "o-1"}),
                                         TxOperation.UPDATE,
                                         WriteParams(update_expression="SET #s = :s",
                                                     attribute_names={"#s": "status"},
                                                     attribute_values={":s": "paid"}))
    await participant.lock()
    try:
        await participant.apply()
    except Exception:
        await participant.rollback()
        raise
    await participant.unlock()
"""
import logging
import re
from enum import StrEnum
from typing import Any

from sqlmodel import Field

from kvtx._exceptions import (
    InternalConsistencyError,
    LockContentionError,
    ReservedAttributeError,
    TransactionError,
    TransactionStateError,
    UnsupportedOperationError,
)
from kvtx._utils import key_digest, now_iso
from kvtx.base import SQLModelBase
from kvtx.config import (
    RESERVED_PLACEHOLDERS,
    TX_ATTRIBUTES,
    TX_ID_ATTRIBUTE,
    TX_IS_APPLIED_ATTRIBUTE,
    TX_IS_TRANSIENT_ATTRIBUTE,
    TX_LOCKED_AT_ATTRIBUTE,
    Transaction,
    TransactionConfig,
    is_reserved_attribute,
)
from kvtx.expression import (
    ExpressionAttributes,
    compose_update_expressions,
    define_expression_attributes,
    merge_expression_attributes,
)
from kvtx.item_ref import ItemRef
from kvtx.optimistic_lock import OptimisticLock
from kvtx.storage.protocol import StorageAdapter

logger = logging.getLogger(__name__)

_BARE_RESERVED_RE = re.compile(r"(?<![#:\w])(_version|_tx_\w+)\b")
"""Reserved attribute referenced directly (not through a placeholder) in an expression."""

_NOT_LOCKED_CONDITION = f"attribute_not_exists(#{TX_ID_ATTRIBUTE})"

_LOCK_UPDATE = (
    f"SET #{TX_ID_ATTRIBUTE} = :{TX_ID_ATTRIBUTE}, "
    f"#{TX_LOCKED_AT_ATTRIBUTE} = :{TX_LOCKED_AT_ATTRIBUTE}, "
    f"#{TX_IS_APPLIED_ATTRIBUTE} = :{TX_IS_APPLIED_ATTRIBUTE}"
)

_APPLIED_UPDATE = f"SET #{TX_IS_APPLIED_ATTRIBUTE} = :{TX_IS_APPLIED_ATTRIBUTE}"

_UNLOCK_UPDATE = "REMOVE " + ", ".join(f"#{name}" for name in TX_ATTRIBUTES)


class TxOperation(StrEnum):
    """Mutation a participant performs on its item."""
    PUT = 'put'
    UPDATE = 'update'
    DELETE = 'delete'
    GET = 'get'


class TxItemState(StrEnum):
    """Participant lifecycle states."""
    UNLOCKED = 'unlocked'
    LOCKING = 'locking'
    LOCKED = 'locked'
    LOCK_CONTENDED = 'lock_contended'
    APPLYING = 'applying'
    APPLIED = 'applied'
    UNLOCKING = 'unlocking'
    COMMITTED = 'committed'
    ROLLING_BACK = 'rolling_back'
    ROLLED_BACK = 'rolled_back'


class WriteParams(SQLModelBase):
    """
    Parameters of the mutation applied by a participant.

    ``item`` is used by ``put``; ``update_expression`` by ``update``. The
    condition and placeholder maps apply to either.
    """

    item: dict[str, Any] = Field(default_factory=dict)
    """Replacement attributes for ``put`` (the key is added automatically)."""

    update_expression: str = ''
    """Update expression for ``update``."""

    condition_expression: str | None = None
    """Extra condition the mutation requires."""

    attribute_names: dict[str, str] = Field(default_factory=dict)
    """``#placeholder -> attribute name`` map."""

    attribute_values: dict[str, Any] = Field(default_factory=dict)
    """``:placeholder -> value`` map."""

    def reserved_references(self) -> set[str]:
        """Reserved attributes or placeholders referenced by these parameters."""
        found = {name for name in self.item if is_reserved_attribute(name)}
        found |= {name for name in self.attribute_names.values() if is_reserved_attribute(name)}
        found |= {
            placeholder for placeholder in self.attribute_names.keys() | self.attribute_values.keys()
            if placeholder in RESERVED_PLACEHOLDERS or is_reserved_attribute(placeholder[1:])
        }
        for expression in (self.update_expression, self.condition_expression or ''):
            found |= set(_BARE_RESERVED_RE.findall(expression))
        return found


def image_id_for(item_ref: ItemRef) -> str:
    """
    Deterministic image id of an item.

    ``<table name>_<sha256 of the canonical key>``: the digest has a fixed
    length, so key values containing ``_`` cannot produce collisions.
    """
    return f"{item_ref.table_name}_{key_digest(item_ref.key)}"


class TransactionParticipant:
    """
    Drives one item through lock, apply and unlock or rollback.

    :param storage: Storage adapter used for the image record
    :param tx: Transaction the item participates in
    :param item_ref: Target item
    :param operation: ``put``, ``update``, ``delete`` (``get`` is not supported)
    :param params: Mutation parameters (``WriteParams`` or an equivalent dict)
    :param config: Image table settings
    :raises ReservedAttributeError: ``params`` reference kvtx's reserved attributes
    """

    def __init__(
            self,
            storage: StorageAdapter,
            tx: Transaction,
            item_ref: ItemRef,
            operation: TxOperation | str,
            params: WriteParams | dict[str, Any] | None = None,
            config: TransactionConfig | None = None,
    ):
        self._config = config or TransactionConfig()
        self._tx = tx
        self._operation = _coerce_operation(operation)
        self._params = params if isinstance(params, WriteParams) else WriteParams.model_validate(params or {})

        reserved = self._params.reserved_references()
        if reserved:
            raise ReservedAttributeError(reserved)

        self._item_ref = item_ref
        self._image_id = image_id_for(item_ref)
        tx_key_attribute, image_key_attribute = self._config.image_key_attributes
        self._item_lock = OptimisticLock(item_ref)
        self._image_lock = OptimisticLock(ItemRef(
            storage,
            self._config.image_table_name,
            {tx_key_attribute: tx.id, image_key_attribute: self._image_id},
        ))

        self._state = TxItemState.UNLOCKED
        self._is_transient = False
        self._is_applied = False

    @property
    def id(self) -> str:
        """Image id of this participant's item."""
        return self._image_id

    @property
    def tx(self) -> Transaction:
        return self._tx

    @property
    def item_ref(self) -> ItemRef:
        return self._item_ref

    @property
    def operation(self) -> TxOperation | str:
        return self._operation

    @property
    def params(self) -> WriteParams:
        return self._params

    @property
    def state(self) -> TxItemState:
        return self._state

    @property
    def is_transient(self) -> bool:
        """Whether the item did not exist before it was locked."""
        return self._is_transient

    @property
    def is_applied(self) -> bool:
        """Whether the mutation has been applied."""
        return self._is_applied

    def __repr__(self) -> str:
        return (
            f"TransactionParticipant(tx={self._tx.id!r}, item={self._item_ref!r}, "
            f"operation={str(self._operation)!r}, state={self._state.value!r})"
        )

    # ---- lock ----
    async def lock(self) -> None:
        """
        Take ownership of the item for the transaction.

        :raises LockContentionError: The item is locked by another transaction
        :raises InternalConsistencyError: The item is already locked by this transaction
        :raises ConditionCheckFailedError: The item changed while being locked
        """
        self._begin((TxItemState.UNLOCKED,), TxItemState.LOCKING)
        try:
            item = await self._item_lock.get()

            if item is None:
                await self._create_transient_item()
            elif item.get(TX_ID_ATTRIBUTE) is None:
                await self._lock_item(item)
            elif item[TX_ID_ATTRIBUTE] != self._tx.id:
                logger.warning(
                    f"Lock contention on {self._item_ref!r}: owned by {item[TX_ID_ATTRIBUTE]}, "
                    f"requested by {self._tx.id}"
                )
                self._state = TxItemState.LOCK_CONTENDED
                raise self._error(
                    LockContentionError,
                    f"Item is locked by transaction {item[TX_ID_ATTRIBUTE]}",
                    owner_tx_id=item[TX_ID_ATTRIBUTE],
                )
            else:
                raise self._error(InternalConsistencyError, "Item is already locked by this transaction")
        except LockContentionError:
            raise
        except BaseException:
            self._state = TxItemState.UNLOCKED
            raise

        self._transition(TxItemState.LOCKED)

    async def _create_transient_item(self) -> None:
        transient_item = {
            TX_ID_ATTRIBUTE: self._tx.id,
            TX_IS_TRANSIENT_ATTRIBUTE: True,
            TX_IS_APPLIED_ATTRIBUTE: False,
            TX_LOCKED_AT_ATTRIBUTE: now_iso(),
        }
        await self._item_lock.put(
            transient_item,
            condition_expression=_NOT_LOCKED_CONDITION,
            attribute_names={f"#{TX_ID_ATTRIBUTE}": TX_ID_ATTRIBUTE},
        )
        self._is_transient = True

    async def _lock_item(self, image: dict[str, Any]) -> None:
        locked_at = now_iso()
        await self._save_image(image, locked_at)

        attributes = define_expression_attributes({
            TX_ID_ATTRIBUTE: self._tx.id,
            TX_LOCKED_AT_ATTRIBUTE: locked_at,
            TX_IS_APPLIED_ATTRIBUTE: False,
        })
        await self._item_lock.update(
            _LOCK_UPDATE,
            condition_expression=_NOT_LOCKED_CONDITION,
            attribute_names=attributes.names,
            attribute_values=attributes.values,
        )

    async def _save_image(self, image: dict[str, Any], timestamp: str) -> None:
        await self._image_lock.put({'image': image, 'created_at': timestamp})

    # ---- apply ----
    async def apply(self) -> None:
        """
        Perform the requested mutation on the locked item.

        ``delete`` is only recorded here; the item is deleted by ``unlock()``.

        :raises UnsupportedOperationError: ``get`` or an unknown operation
        :raises ConditionCheckFailedError: The item changed since it was locked,
            or the caller's condition does not hold
        """
        self._begin((TxItemState.LOCKED,), TxItemState.APPLYING)
        try:
            if self._operation == TxOperation.PUT:
                await self._apply_put()
            elif self._operation == TxOperation.UPDATE:
                await self._apply_update()
            elif self._operation == TxOperation.DELETE:
                pass
            elif self._operation == TxOperation.GET:
                raise self._error(UnsupportedOperationError, "Isolated reads are not supported")
            else:
                raise self._error(UnsupportedOperationError, f"Unsupported operation: {self._operation!r}")
        except BaseException:
            self._state = TxItemState.LOCKED
            raise

        self._is_applied = True
        self._transition(TxItemState.APPLIED)

    async def _apply_put(self) -> None:
        params = self._params
        await self._item_lock.put(
            {
                **params.item,
                TX_ID_ATTRIBUTE: self._tx.id,
                TX_IS_APPLIED_ATTRIBUTE: True,
            },
            condition_expression=params.condition_expression,
            attribute_names=params.attribute_names or None,
            attribute_values=params.attribute_values or None,
        )

    async def _apply_update(self) -> None:
        params = self._params
        attributes = merge_expression_attributes(
            ExpressionAttributes(names=params.attribute_names, values=params.attribute_values),
            define_expression_attributes({TX_IS_APPLIED_ATTRIBUTE: True}),
        )
        await self._item_lock.update(
            compose_update_expressions(params.update_expression, _APPLIED_UPDATE),
            condition_expression=params.condition_expression,
            attribute_names=attributes.names,
            attribute_values=attributes.values,
        )

    # ---- unlock ----
    async def unlock(self) -> None:
        """
        Commit: release the item.

        A delete operation deletes the item now; any other operation strips
        the ``_tx_*`` markers.

        :raises ConditionCheckFailedError: The item changed since it was last written
        """
        self._begin((TxItemState.APPLIED,), TxItemState.UNLOCKING)
        try:
            if self._operation == TxOperation.DELETE:
                await self._item_lock.delete()
            else:
                await self._remove_lock_attributes()
        except BaseException:
            self._state = TxItemState.APPLIED
            raise

        self._transition(TxItemState.COMMITTED)

    async def _remove_lock_attributes(self) -> None:
        await self._item_lock.update(
            _UNLOCK_UPDATE,
            attribute_names={f"#{name}": name for name in TX_ATTRIBUTES},
        )

    # ---- rollback ----
    async def rollback(self) -> None:
        """
        Abort: return the item to its state before ``lock()``.

        :raises InternalConsistencyError: The saved image is missing
        :raises ConditionCheckFailedError: The item changed since it was last written
        """
        previous_state = self._state
        self._begin((TxItemState.LOCKED, TxItemState.APPLIED), TxItemState.ROLLING_BACK)
        try:
            if self._is_transient:
                await self._item_lock.delete()
            elif not self._is_applied:
                await self._remove_lock_attributes()
            else:
                await self._restore_image()
        except BaseException:
            self._state = previous_state
            raise

        self._transition(TxItemState.ROLLED_BACK)

    async def _restore_image(self) -> None:
        record = await self._image_lock.get()
        if not record or 'image' not in record:
            raise self._error(
                InternalConsistencyError,
                f"Image {self._image_id} of transaction {self._tx.id} is missing",
            )
        await self._item_lock.restore(record['image'])

    # ---- state helpers ----
    def _begin(self, allowed: tuple[TxItemState, ...], state: TxItemState) -> None:
        if self._state not in allowed:
            raise self._error(
                TransactionStateError,
                f"Cannot move from {self._state.value} to {state.value}",
            )
        self._transition(state)

    def _transition(self, state: TxItemState) -> None:
        logger.debug(f"{self._item_ref!r} in transaction {self._tx.id}: {self._state.value} -> {state.value}")
        self._state = state

    def _error(self, error_class: type[TransactionError], message: str, **kwargs: Any) -> TransactionError:
        return error_class(
            message,
            tx_id=self._tx.id,
            table_name=self._item_ref.table_name,
            key=self._item_ref.key,
            **kwargs,
        )


def _coerce_operation(operation: TxOperation | str) -> TxOperation | str:
    """Map a string to ``TxOperation``; unknown values are kept and rejected by ``apply()``."""
    try:
        return TxOperation(operation)
    except ValueError:
        return operation
