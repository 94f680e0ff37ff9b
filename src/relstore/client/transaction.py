"""Transaction boundary for client operations.

Every public operation runs inside ``open_transaction``.  When the caller
threads an existing transaction through ``tx=``, that transaction is used
as-is and the caller stays responsible for committing it; otherwise a new
one is opened over the operation's collection scope and committed on
success.

On failure the transaction is aborted before the error propagates.
``StoreError`` subclasses pass through unchanged; anything else (a
user-supplied ``where`` predicate raising, a driver error) is wrapped in
``UnknownError`` with the original chained as ``__cause__``.

Usage:
    async with open_transaction(storage, {"authors", "books"}, "readwrite") as tx:
        await tx.get_collection("authors").put({"id": 1, "name": "A"})
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

from relstore.adapters.base import StorageEngine, StorageTransaction, TransactionMode
from relstore.errors import StoreError, UnknownError

logger = logging.getLogger(__name__)


def _wrap(error: BaseException) -> StoreError:
    if isinstance(error, StoreError):
        return error
    return UnknownError(str(error) or type(error).__name__)


async def _abort(tx: StorageTransaction, error: StoreError) -> None:
    if tx.status == "running":
        await tx.abort(error)


@asynccontextmanager
async def open_transaction(
    storage: StorageEngine,
    collections: Iterable[str],
    mode: TransactionMode,
    tx: StorageTransaction | None = None,
) -> AsyncIterator[StorageTransaction]:
    """Yield a transaction covering ``collections``.

    Args:
        storage: Storage engine to open the transaction on.
        collections: Collection names the operation touches.
        mode: ``"readonly"`` or ``"readwrite"``.
        tx: Caller-owned transaction to reuse instead of opening one.

    Yields:
        The active transaction.

    Raises:
        StoreError: The failure that aborted the transaction.
        UnknownError: Wrapping any non-store exception.
    """
    if tx is not None:
        try:
            yield tx
        except asyncio.CancelledError:
            await _abort(tx, UnknownError("Operation cancelled"))
            raise
        except Exception as e:
            error = _wrap(e)
            await _abort(tx, error)
            if error is e:
                raise
            raise error from e
        return

    names = sorted(set(collections))
    tx = await storage.open_transaction(names, mode)
    logger.debug(f"Opened {mode} transaction over {names}")
    try:
        yield tx
    except asyncio.CancelledError:
        await _abort(tx, UnknownError("Operation cancelled"))
        raise
    except Exception as e:
        error = _wrap(e)
        logger.warning(f"Aborting transaction over {names}: {error}")
        await _abort(tx, error)
        if error is e:
            raise
        raise error from e

    if tx.status == "running":
        try:
            await tx.commit()
        except StoreError:
            raise
        except Exception as e:
            raise UnknownError(f"Commit failed: {e}") from e
        logger.debug(f"Committed transaction over {names}")
    elif tx.error is not None:
        # Aborted from inside the block without an exception reaching us
        raise tx.error
