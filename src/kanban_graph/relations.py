"""Persistent directed task relations.

Edges are tagged triples ``(from_id, to_id, kind)`` held in one collection,
unique on the ordered pair.  :class:`RelationStore` adds no graph semantics;
see :mod:`kanban_graph.graph` for cycle and blocked-status rules.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Optional

from loguru import logger

from .context import OperationContext
from .models import Relation, RelationKind
from .storage.interfaces import RelationRepository

Adjacency = dict[int, list[tuple[int, RelationKind]]]


class RelationStore:
    def __init__(self, repo: RelationRepository) -> None:
        self._repo = repo

    def get(self, from_id: int, to_id: int) -> Optional[Relation]:
        return self._repo.get(from_id, to_id)

    def upsert(self, ctx: OperationContext, from_id: int, to_id: int, kind: RelationKind) -> Relation:
        """Insert the edge, or replace the kind of an existing one for the pair."""
        ctx.check("upsert relation")
        relation = self._repo.upsert(Relation(from_id=from_id, to_id=to_id, kind=kind))
        logger.debug("Relation {} -> {} set to {}", from_id, to_id, kind.name.lower())
        return relation

    def delete(self, ctx: OperationContext, from_id: int, to_id: int) -> bool:
        ctx.check("delete relation")
        removed = self._repo.delete(from_id, to_id)
        if removed:
            logger.debug("Relation {} -> {} removed", from_id, to_id)
        return removed

    def delete_for_task(self, ctx: OperationContext, task_id: int) -> int:
        ctx.check("delete task relations")
        return self._repo.delete_for_task(task_id)

    def for_task(self, task_id: int) -> list[Relation]:
        return self._repo.for_task(task_id)

    def outgoing(self, task_id: int) -> list[Relation]:
        return [r for r in self._repo.for_task(task_id) if r.from_id == task_id]

    def incoming(self, task_id: int) -> list[Relation]:
        return [r for r in self._repo.for_task(task_id) if r.to_id == task_id]

    def all(self) -> list[Relation]:
        return self._repo.list()

    def adjacency(self) -> Adjacency:
        """Outgoing edges of every task, all kinds in one map."""
        adj: Adjacency = defaultdict(list)
        for rel in self._repo.list():
            adj[rel.from_id].append((rel.to_id, rel.kind))
        return adj
