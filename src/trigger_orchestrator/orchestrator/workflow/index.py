"""Trigger index: reverse mapping from triggers to the workflows listening on them.

The coordination store is the single source of truth. Every mutation batch is
submitted as one store-level transaction. The two batches of one ``reindex``
call (removals, then additions) are independent transactions; ``rebuild`` is
the recovery path if a process dies in between.

Redis keys:
- ``workflow:workflow_list:<trigger_id>``                 set of workflow ids
- ``workflow:trigger_list:<workflow_id>``                 set of trigger ids
- ``workflow:workflow_blocking_order_list:<trigger_id>``  list, head runs first
"""

from __future__ import annotations

import fnmatch
import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import Protocol

import redis
from redis.exceptions import RedisError

from .graph import Graph, extract_triggers, has_blocking_path

logger = logging.getLogger(__name__)

KEY_NAMESPACE = "workflow"
KEY_WORKFLOWS_PER_TRIGGER = "workflow:workflow_list:{}"
KEY_BLOCKING_ORDER_PER_TRIGGER = "workflow:workflow_blocking_order_list:{}"
KEY_TRIGGERS_PER_WORKFLOW = "workflow:trigger_list:{}"


class IndexUnavailableError(RuntimeError):
    """The coordination store could not be reached or rejected a batch."""


class IndexBatch(Protocol):
    def sadd(self, key: str, member: str) -> None: ...

    def srem(self, key: str, member: str) -> None: ...

    def rpush(self, key: str, value: str) -> None: ...

    def lrem(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class CoordinationStore(Protocol):
    """Shared set/list store. Batches opened by ``transaction`` apply all-or-nothing."""

    def smembers(self, key: str) -> set[str]: ...

    def lrange(self, key: str) -> list[str]: ...

    def keys(self, pattern: str) -> list[str]: ...

    def transaction(self) -> AbstractContextManager[IndexBatch]: ...


class _RedisBatch:
    def __init__(self, pipeline: redis.client.Pipeline) -> None:
        self._pipeline = pipeline

    def sadd(self, key: str, member: str) -> None:
        self._pipeline.sadd(key, member)

    def srem(self, key: str, member: str) -> None:
        self._pipeline.srem(key, member)

    def rpush(self, key: str, value: str) -> None:
        self._pipeline.rpush(key, value)

    def lrem(self, key: str, value: str) -> None:
        self._pipeline.lrem(key, 0, value)

    def delete(self, key: str) -> None:
        self._pipeline.delete(key)


class RedisCoordinationStore:
    """Redis-backed store. Batches run inside MULTI/EXEC."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCoordinationStore:
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def smembers(self, key: str) -> set[str]:
        try:
            return {_text(m) for m in self._client.smembers(key)}
        except RedisError as e:
            raise IndexUnavailableError(f"SMEMBERS {key} failed: {e}") from e

    def lrange(self, key: str) -> list[str]:
        try:
            return [_text(v) for v in self._client.lrange(key, 0, -1)]
        except RedisError as e:
            raise IndexUnavailableError(f"LRANGE {key} failed: {e}") from e

    def keys(self, pattern: str) -> list[str]:
        try:
            return [_text(k) for k in self._client.scan_iter(match=pattern)]
        except RedisError as e:
            raise IndexUnavailableError(f"SCAN {pattern} failed: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator[IndexBatch]:
        pipeline = self._client.pipeline(transaction=True)
        try:
            yield _RedisBatch(pipeline)
            pipeline.execute()
        except RedisError as e:
            raise IndexUnavailableError(f"Transaction failed: {e}") from e
        finally:
            pipeline.reset()


def _text(value: str | bytes) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class _MemoryBatch:
    def __init__(self) -> None:
        self.ops: list[tuple[str, str, str]] = []

    def sadd(self, key: str, member: str) -> None:
        self.ops.append(("sadd", key, member))

    def srem(self, key: str, member: str) -> None:
        self.ops.append(("srem", key, member))

    def rpush(self, key: str, value: str) -> None:
        self.ops.append(("rpush", key, value))

    def lrem(self, key: str, value: str) -> None:
        self.ops.append(("lrem", key, value))

    def delete(self, key: str) -> None:
        self.ops.append(("delete", key, ""))


class InMemoryCoordinationStore:
    """Single-process store with the same semantics as the Redis one.

    Empty sets and lists are dropped, like Redis drops empty keys.
    """

    def __init__(self) -> None:
        self._sets: dict[str, set[str]] = {}
        self._lists: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    def smembers(self, key: str) -> set[str]:
        with self._lock:
            return set(self._sets.get(key, ()))

    def lrange(self, key: str) -> list[str]:
        with self._lock:
            return list(self._lists.get(key, ()))

    def keys(self, pattern: str) -> list[str]:
        with self._lock:
            names = list(self._sets) + list(self._lists)
        return [k for k in names if fnmatch.fnmatchcase(k, pattern)]

    @contextmanager
    def transaction(self) -> Iterator[IndexBatch]:
        batch = _MemoryBatch()
        yield batch
        with self._lock:
            for op, key, value in batch.ops:
                self._apply(op, key, value)

    def _apply(self, op: str, key: str, value: str) -> None:
        if op == "sadd":
            self._sets.setdefault(key, set()).add(value)
        elif op == "srem":
            members = self._sets.get(key)
            if members is not None:
                members.discard(value)
                if not members:
                    del self._sets[key]
        elif op == "rpush":
            self._lists.setdefault(key, []).append(value)
        elif op == "lrem":
            items = [v for v in self._lists.get(key, []) if v != value]
            if items:
                self._lists[key] = items
            else:
                self._lists.pop(key, None)
        elif op == "delete":
            self._sets.pop(key, None)
            self._lists.pop(key, None)
        else:
            raise ValueError(f"Unknown store operation {op!r}")


class TriggerIndex:
    """Keep the reverse mapping consistent with workflow graphs and answer lookups.

    Store outages never raise out of this class: mutations return False and
    lookups return empty collections, after logging the error.
    """

    def __init__(self, store: CoordinationStore) -> None:
        self._store = store

    def reindex(self, workflow_id: int, graph: Graph) -> bool:
        """Diff the workflow's reachable triggers against the index and patch it."""

        wid = str(workflow_id)
        triggers_key = KEY_TRIGGERS_PER_WORKFLOW.format(wid)
        try:
            previous = self._store.smembers(triggers_key)
        except IndexUnavailableError as e:
            logger.error(
                "Trigger index unavailable; reindex skipped",
                extra={"workflow_id": workflow_id, "error": str(e)},
            )
            return False

        current = {t.module_id: t for t in extract_triggers(graph, reachable_only=True)}
        to_remove = sorted(previous - current.keys())
        to_add = sorted(current.keys() - previous)
        kept = sorted(previous & current.keys())

        try:
            # A kept trigger may have gained or lost its blocking path.
            order_fixes: list[tuple[str, bool]] = []
            for trigger_id in kept:
                order = self._store.lrange(KEY_BLOCKING_ORDER_PER_TRIGGER.format(trigger_id))
                in_order = wid in order
                wants_order = has_blocking_path(current[trigger_id])
                if in_order != wants_order:
                    order_fixes.append((trigger_id, wants_order))

            if to_remove:
                with self._store.transaction() as batch:
                    for trigger_id in to_remove:
                        batch.srem(KEY_WORKFLOWS_PER_TRIGGER.format(trigger_id), wid)
                        batch.srem(triggers_key, trigger_id)
                        batch.lrem(KEY_BLOCKING_ORDER_PER_TRIGGER.format(trigger_id), wid)

            if to_add or order_fixes:
                with self._store.transaction() as batch:
                    for trigger_id in to_add:
                        block = current[trigger_id]
                        batch.sadd(KEY_WORKFLOWS_PER_TRIGGER.format(trigger_id), wid)
                        batch.sadd(triggers_key, trigger_id)
                        if has_blocking_path(block):
                            batch.rpush(KEY_BLOCKING_ORDER_PER_TRIGGER.format(trigger_id), wid)
                    for trigger_id, wants_order in order_fixes:
                        order_key = KEY_BLOCKING_ORDER_PER_TRIGGER.format(trigger_id)
                        if wants_order:
                            batch.rpush(order_key, wid)
                        else:
                            batch.lrem(order_key, wid)
        except IndexUnavailableError as e:
            logger.error(
                "Trigger index update failed", extra={"workflow_id": workflow_id, "error": str(e)}
            )
            return False

        if to_remove or to_add or order_fixes:
            logger.info(
                "Trigger index updated",
                extra={
                    "workflow_id": workflow_id,
                    "added": to_add,
                    "removed": to_remove,
                    "order_fixes": [t for t, _ in order_fixes],
                },
            )
        return True

    def remove_workflow(self, workflow_id: int) -> bool:
        """Drop every index entry of a deleted workflow."""

        return self.reindex(workflow_id, Graph({}))

    def set_blocking_order(self, trigger_id: str, workflow_ids: Iterable[int]) -> bool:
        """Replace the blocking execution order of a trigger wholesale.

        Ids are not checked against the trigger's listeners.
        """

        key = KEY_BLOCKING_ORDER_PER_TRIGGER.format(trigger_id)
        try:
            with self._store.transaction() as batch:
                batch.delete(key)
                for workflow_id in workflow_ids:
                    batch.rpush(key, str(workflow_id))
        except IndexUnavailableError as e:
            logger.error(
                "Could not save blocking order", extra={"trigger_id": trigger_id, "error": str(e)}
            )
            return False
        return True

    def lookup_workflows(self, trigger_id: str) -> set[int]:
        try:
            members = self._store.smembers(KEY_WORKFLOWS_PER_TRIGGER.format(trigger_id))
        except IndexUnavailableError as e:
            logger.warning(
                "Trigger index unavailable", extra={"trigger_id": trigger_id, "error": str(e)}
            )
            return set()
        return {int(m) for m in members}

    def lookup_order(self, trigger_id: str) -> list[int]:
        try:
            items = self._store.lrange(KEY_BLOCKING_ORDER_PER_TRIGGER.format(trigger_id))
        except IndexUnavailableError as e:
            logger.warning(
                "Trigger index unavailable", extra={"trigger_id": trigger_id, "error": str(e)}
            )
            return []
        return [int(i) for i in items]

    def lookup_triggers(self, workflow_id: int) -> set[str]:
        try:
            return self._store.smembers(KEY_TRIGGERS_PER_WORKFLOW.format(workflow_id))
        except IndexUnavailableError as e:
            logger.warning(
                "Trigger index unavailable", extra={"workflow_id": workflow_id, "error": str(e)}
            )
            return set()

    def rebuild(self, workflows: Iterable[tuple[int, Graph]], preserve_order: bool = True) -> bool:
        """Re-derive the whole index from stored workflows.

        With ``preserve_order`` the previous relative blocking order survives;
        workflows new to a trigger's order are appended in id order.
        """

        workflows = sorted(workflows, key=lambda item: item[0])
        try:
            keys = self._store.keys(f"{KEY_NAMESPACE}:*")
            previous_orders: dict[str, list[str]] = {}
            if preserve_order:
                prefix = KEY_BLOCKING_ORDER_PER_TRIGGER.format("")
                for key in keys:
                    if key.startswith(prefix):
                        previous_orders[key[len(prefix):]] = self._store.lrange(key)
            if keys:
                with self._store.transaction() as batch:
                    for key in keys:
                        batch.delete(key)
        except IndexUnavailableError as e:
            logger.error("Trigger index rebuild failed", extra={"error": str(e)})
            return False

        ok = True
        for workflow_id, graph in workflows:
            ok = self.reindex(workflow_id, graph) and ok

        for trigger_id, old_order in previous_orders.items():
            fresh = self.lookup_order(trigger_id)
            rank = {wid: i for i, wid in enumerate(int(w) for w in old_order)}
            reordered = sorted(fresh, key=lambda wid: (wid not in rank, rank.get(wid, 0), wid))
            if reordered != fresh:
                ok = self.set_blocking_order(trigger_id, reordered) and ok

        logger.info("Trigger index rebuilt", extra={"workflows": len(workflows), "ok": ok})
        return ok
