"""Optimistic mutation engine.

The engine owns the authoritative in-memory state of every registered
collection and is its only writer. Applying an operation changes the
collection synchronously (one assignment, so no reader ever sees a partial
change), then the write is sent through an injected coroutine function.
When the write settles the operation is either confirmed (temporary ids are
swapped for server ids and the collection's cached reads are invalidated) or
rolled back (the collection is restored from the operation's snapshot).

Ordering:
    Operations on one collection are applied in call order. Their writes are
    serialized per composite key: a write is only dispatched once every
    earlier write touching the same item has settled. CLEAR touches every
    item, so it waits for all earlier writes and every later write waits
    for it. Writes on different items run concurrently and may settle in any
    order.

Rollback:
    A write that raises or is cancelled (e.g. by a transport timeout) fails
    its operation. A failed operation restores its own snapshot, then every
    later operation that has not been rolled back is replayed on top of it.
    Interleaved confirmations and rollbacks therefore never clobber each
    other.
"""

import asyncio
import copy
from typing import Any, Awaitable, Callable, Generator, Hashable, Iterable, Mapping, Optional, Sequence

from shopcache.config import CollectionPolicy
from shopcache.core.collections import (
    apply_operation,
    has_unique_keys,
    lane_key,
    merge_collections,
    replace_id,
)
from shopcache.domain.errors import InvariantViolation, TransportFailure, check_invariant
from shopcache.domain.events import (
    CacheInvalidated,
    EventBus,
    OperationApplied,
    OperationConfirmed,
    OperationRolledBack,
)
from shopcache.domain.protocols import Cache
from shopcache.domain.types import (
    Item,
    OperationKind,
    OperationOutcome,
    OperationState,
    OptimisticOperation,
)
from shopcache.logger import get_logger
from shopcache.utils import is_temp_id

logger = get_logger(__name__)

# Sends an operation to the server and returns the server's response
Writer = Callable[[OptimisticOperation], Awaitable[Any]]


class OperationHandle:
    """Handle returned by :meth:`OptimisticMutationEngine.apply`.

    The collection already reflects the operation when the handle is
    returned. Await the handle (or :meth:`outcome`) to learn how it settled.
    """

    def __init__(self, operation: OptimisticOperation, task: "asyncio.Future[OperationOutcome]") -> None:
        self.operation = operation
        self._task = task

    @property
    def id(self) -> str:
        return self.operation.id

    def done(self) -> bool:
        return self._task.done()

    async def outcome(self) -> OperationOutcome:
        """Wait for the operation to settle and return its outcome."""
        return await asyncio.shield(self._task)

    async def result(self) -> Any:
        """Return the server response, or raise the failure after rollback.

        Raises:
            TransportFailure: If the write failed; the collection has already
                been restored when this is raised
            InvariantViolation: If the operation was refused
        """
        return (await self.outcome()).raise_for_failure()

    def __await__(self) -> Generator[Any, None, OperationOutcome]:
        return self.outcome().__await__()


class OptimisticMutationEngine:
    """Apply mutations to local collections before the server confirms them.

    Must be used from within a running event loop: :meth:`apply` schedules
    the write as a task.

    Example:
        >>> engine = OptimisticMutationEngine(cache=store)
        >>> engine.register("cart", CollectionPolicy(read_path="/cart", max_quantity=10))
        >>> handle = engine.apply("cart", OptimisticOperation.add({"product_id": 7, "quantity": 1}), writer)
        >>> engine.items("cart")   # already contains the new line
        >>> outcome = await handle
    """

    def __init__(
        self,
        cache: Optional[Cache] = None,
        event_bus: Optional[EventBus] = None,
        strict_invariants: bool = False,
    ) -> None:
        """Initialize the engine.

        Args:
            cache: Cache whose entries under a collection's read path are
                invalidated after a confirmed mutation
            event_bus: Receives operation lifecycle events
            strict_invariants: Raise InvariantViolation instead of logging
        """
        self._cache = cache
        self._event_bus = event_bus
        self._strict = strict_invariants
        self._policies: dict[str, CollectionPolicy] = {}
        self._states: dict[str, tuple[Item, ...]] = {}
        # Operations whose snapshots may still be needed, in apply order
        self._journals: dict[str, list[OptimisticOperation]] = {}
        # Last write task per composite key, and last CLEAR per collection
        self._lanes: dict[str, dict[Hashable, asyncio.Task[OperationOutcome]]] = {}
        self._barriers: dict[str, asyncio.Task[OperationOutcome]] = {}
        self._tasks: set[asyncio.Task[OperationOutcome]] = set()

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def register(self, collection_key: str, policy: CollectionPolicy) -> None:
        """Declare a collection and its identity rules."""
        self._policies[collection_key] = policy
        self._states.setdefault(collection_key, ())
        logger.debug(f"Registered collection '{collection_key}' (read_path={policy.read_path})")

    def policy(self, collection_key: str) -> CollectionPolicy:
        try:
            return self._policies[collection_key]
        except KeyError:
            raise KeyError(f"Unknown collection '{collection_key}'; register it first") from None

    def is_registered(self, collection_key: str) -> bool:
        return collection_key in self._policies

    def items(self, collection_key: str) -> list[dict[str, Any]]:
        """Return a copy of the collection for display."""
        self.policy(collection_key)
        return [dict(copy.deepcopy(item)) for item in self._states.get(collection_key, ())]

    def pending(self, collection_key: str) -> list[OptimisticOperation]:
        """Operations applied locally but not yet settled, in apply order."""
        return [op for op in self._journals.get(collection_key, []) if op.state is OperationState.APPLIED]

    def load(self, collection_key: str, items: Iterable[Item]) -> None:
        """Replace the collection's base state, e.g. with freshly fetched data.

        Operations still in flight are re-applied on top of the new state so
        that their optimistic effects stay visible and their rollback
        snapshots stay accurate.
        """
        policy = self.policy(collection_key)
        base = tuple(dict(item) for item in items)
        if not check_invariant(
            has_unique_keys(base, policy),
            "duplicate composite keys in loaded collection",
            self._strict,
            collection=collection_key,
        ):
            base = tuple(merge_collections([], base, key=policy.composite_key))

        pending = self.pending(collection_key)
        self._journals[collection_key] = pending
        self._states[collection_key] = self._replay(base, pending, policy)
        logger.debug(f"Loaded {len(base)} items into '{collection_key}' ({len(pending)} pending re-applied)")

    def reset(self, collection_key: Optional[str] = None) -> None:
        """Forget collection state, e.g. at logout.

        Writes already in flight are not cancelled; their outcomes no longer
        affect the forgotten state.
        """
        keys = [collection_key] if collection_key is not None else list(self._states)
        for key in keys:
            self._states[key] = ()
            self._journals.pop(key, None)
            self._lanes.pop(key, None)
            self._barriers.pop(key, None)
        logger.debug(f"Reset {len(keys)} collection(s)")

    async def drain(self) -> None:
        """Wait until every in-flight operation has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def apply(self, collection_key: str, operation: OptimisticOperation, write: Writer) -> OperationHandle:
        """
        Apply an operation locally and schedule its write.

        Args:
            collection_key: Registered collection to mutate
            operation: Fresh operation (see ``OptimisticOperation.add`` etc.)
            write: Coroutine function sending the operation to the server

        Returns:
            Handle for awaiting the outcome. An operation that would break
            composite-key uniqueness is refused in non-strict mode: nothing is
            applied or written and the handle is already settled with an
            ``InvariantViolation``.

        Raises:
            KeyError: If the collection is not registered
            ValueError: If the operation was already applied
            InvariantViolation: If the operation is refused in strict mode
        """
        policy = self.policy(collection_key)
        if operation.collection_key or operation.settled:
            raise ValueError(f"Operation {operation.id} was already applied")

        before = self._states.get(collection_key, ())
        after = apply_operation(before, operation, policy)
        if not check_invariant(
            has_unique_keys(after, policy),
            "operation would create a composite key collision",
            self._strict,
            collection=collection_key,
            operation=operation.id,
        ):
            return self._refuse(collection_key, operation, "operation would create a composite key collision")

        operation.collection_key = collection_key
        operation.snapshot_before = before
        self._states[collection_key] = after
        self._journals.setdefault(collection_key, []).append(operation)
        logger.debug(f"Applied {operation.kind.value} {operation.id} to '{collection_key}'")
        self._publish(OperationApplied(collection_key=collection_key, operation_id=operation.id, kind=operation.kind))

        lane = lane_key(before, operation, policy)
        predecessors = self._predecessors(collection_key, lane)
        task = asyncio.ensure_future(self._settle(operation, write, predecessors))
        self._track(collection_key, lane, task)
        return OperationHandle(operation, task)

    def _refuse(self, collection_key: str, operation: OptimisticOperation, reason: str) -> OperationHandle:
        """Settle an operation that was neither applied nor written."""
        operation.collection_key = collection_key
        operation.state = OperationState.ROLLED_BACK
        logger.debug(f"Refused {operation.kind.value} {operation.id} on '{operation.collection_key}'")
        self._publish(
            OperationRolledBack(collection_key=operation.collection_key, operation_id=operation.id, reason=reason)
        )
        settled: asyncio.Future[OperationOutcome] = asyncio.get_running_loop().create_future()
        settled.set_result(OperationOutcome.failure(operation.id, InvariantViolation(reason)))
        return OperationHandle(operation, settled)

    def _predecessors(self, collection_key: str, lane: Optional[Hashable]) -> list[asyncio.Task[OperationOutcome]]:
        lanes = self._lanes.get(collection_key, {})
        predecessors = list(lanes.values()) if lane is None else [t for t in [lanes.get(lane)] if t is not None]
        barrier = self._barriers.get(collection_key)
        if barrier is not None and barrier not in predecessors:
            predecessors.append(barrier)
        return [t for t in predecessors if not t.done()]

    def _track(self, collection_key: str, lane: Optional[Hashable], task: asyncio.Task[OperationOutcome]) -> None:
        self._tasks.add(task)
        if lane is None:
            self._barriers[collection_key] = task
        else:
            self._lanes.setdefault(collection_key, {})[lane] = task

        def _done(finished: asyncio.Task[OperationOutcome]) -> None:
            self._tasks.discard(finished)
            if lane is None:
                if self._barriers.get(collection_key) is finished:
                    del self._barriers[collection_key]
            else:
                lanes = self._lanes.get(collection_key, {})
                if lanes.get(lane) is finished:
                    del lanes[lane]

        task.add_done_callback(_done)

    async def _settle(
        self,
        operation: OptimisticOperation,
        write: Writer,
        predecessors: Sequence[asyncio.Task[OperationOutcome]],
    ) -> OperationOutcome:
        try:
            if predecessors:
                await asyncio.wait(predecessors)
            # The write runs as its own task so that a write cancelled from
            # inside (e.g. a transport timeout) is told apart from this task
            # being cancelled
            write_task = asyncio.ensure_future(write(operation))
            try:
                await asyncio.wait({write_task})
            except asyncio.CancelledError:
                write_task.cancel()
                raise
        except asyncio.CancelledError as e:
            self._rollback(operation, self._failure(operation, e))
            raise

        try:
            result = write_task.result()
        except (Exception, asyncio.CancelledError) as e:
            failure = self._failure(operation, e)
            self._rollback(operation, failure)
            return OperationOutcome.failure(operation.id, failure)

        self._confirm(operation, result)
        return OperationOutcome.success(operation.id, result)

    @staticmethod
    def _failure(operation: OptimisticOperation, error: BaseException) -> TransportFailure:
        if isinstance(error, TransportFailure):
            return error
        return TransportFailure(operation.collection_key, operation.kind.value.upper(), error)

    def _confirm(self, operation: OptimisticOperation, result: Any) -> None:
        collection_key = operation.collection_key
        if not self._is_tracked(operation):
            logger.debug(f"Ignoring confirmation of {operation.id}: '{collection_key}' was reset")
            return
        if not check_invariant(
            not operation.settled,
            "operation settled twice",
            self._strict,
            operation=operation.id,
            state=operation.state.value,
        ):
            return

        policy = self._policies[collection_key]
        operation.state = OperationState.CONFIRMED
        operation.snapshot_before = None

        server_id = self._server_id(result, policy)
        if operation.kind is OperationKind.ADD and server_id is not None:
            temp_id = self._added_id(operation, policy)
            if temp_id != server_id and (temp_id == operation.id or is_temp_id(temp_id)):
                operation.server_id = server_id
                self._states[collection_key] = replace_id(self._states[collection_key], temp_id, server_id, policy)
                # Queued operations addressing the new item must use its real id,
                # and their snapshots must not bring the temporary id back
                for queued in self.pending(collection_key):
                    if queued.target_id == temp_id:
                        queued.target_id = server_id
                    if queued.snapshot_before is not None:
                        queued.snapshot_before = replace_id(queued.snapshot_before, temp_id, server_id, policy)
        self._trim(collection_key)
        logger.debug(f"Confirmed {operation.kind.value} {operation.id} on '{collection_key}'")

        if self._cache is not None:
            removed = self._cache.invalidate_pattern(policy.read_path)
            self._publish(CacheInvalidated(pattern=policy.read_path, removed=removed))
        self._publish(
            OperationConfirmed(collection_key=collection_key, operation_id=operation.id, server_id=server_id)
        )

    def _rollback(self, operation: OptimisticOperation, failure: TransportFailure) -> None:
        collection_key = operation.collection_key
        if not self._is_tracked(operation):
            logger.debug(f"Ignoring rollback of {operation.id}: '{collection_key}' was reset")
            return
        if not check_invariant(
            not operation.settled,
            "operation settled twice",
            self._strict,
            operation=operation.id,
            state=operation.state.value,
        ):
            return

        policy = self._policies[collection_key]
        journal = self._journals[collection_key]
        index = next(i for i, op in enumerate(journal) if op is operation)
        base = operation.snapshot_before or ()
        later = journal[index + 1:]

        operation.state = OperationState.ROLLED_BACK
        operation.snapshot_before = None
        del journal[index]
        self._states[collection_key] = self._replay(base, later, policy)
        self._trim(collection_key)

        logger.error(f"Rolled back {operation.kind.value} {operation.id} on '{collection_key}': {failure}")
        self._publish(
            OperationRolledBack(collection_key=collection_key, operation_id=operation.id, reason=str(failure))
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _replay(
        self,
        base: Sequence[Item],
        operations: Sequence[OptimisticOperation],
        policy: CollectionPolicy,
    ) -> tuple[Item, ...]:
        """Re-apply operations on top of ``base``, refreshing pending snapshots."""
        state = tuple(base)
        for op in operations:
            if op.state is OperationState.ROLLED_BACK:
                continue
            if op.state is OperationState.APPLIED:
                op.snapshot_before = state
            after = apply_operation(state, op, policy)
            if not has_unique_keys(after, policy):
                continue
            if op.server_id is not None:
                after = replace_id(after, self._added_id(op, policy), op.server_id, policy)
            state = after
        return state

    def _trim(self, collection_key: str) -> None:
        """Drop leading settled operations; no rollback can reach them."""
        journal = self._journals.get(collection_key, [])
        while journal and journal[0].settled:
            journal.pop(0)

    def _is_tracked(self, operation: OptimisticOperation) -> bool:
        return any(op is operation for op in self._journals.get(operation.collection_key, []))

    @staticmethod
    def _added_id(operation: OptimisticOperation, policy: CollectionPolicy) -> Any:
        payload_id = (operation.payload or {}).get(policy.id_field)
        return payload_id if payload_id is not None else operation.id

    @staticmethod
    def _server_id(result: Any, policy: CollectionPolicy) -> Any:
        if isinstance(result, Mapping):
            return result.get(policy.id_field)
        return None

    def _publish(self, event: Any) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event)
