"""Lineage tracker: the append-only prompt forest.

Every rendered prompt becomes a PromptNode linked to the node that caused
it. Nodes are never deleted; editing an upstream artifact marks its
subtree ``stale`` and regeneration creates fresh nodes beside the old ones.
"""

from __future__ import annotations

import threading
from collections import deque
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from gamefoundry.models.lineage import (
    LineageSnapshot,
    NodeError,
    NodeLevel,
    NodeStatus,
    PromptNode,
)
from gamefoundry.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from gamefoundry.models.artifacts import GeneratedArtifact

log = get_logger(__name__)


class LineageError(Exception):
    """Raised on invalid tracker operations (unknown ids, double completion)."""

    def __init__(self, node_id: str | None, message: str) -> None:
        self.node_id = node_id
        super().__init__(message)


class LineageTracker:
    """Thread-safe registry of PromptNodes.

    ``record`` assigns a new id and links it to its parent in one locked
    step, so concurrent sub-generations never corrupt edges.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, PromptNode] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def record(
        self,
        parent_id: str | None,
        level: NodeLevel | str,
        prompt_text: str,
        *,
        phase: str | None = None,
        label: str = "",
        template_id: str | None = None,
    ) -> str:
        """Create a pending node and return its id.

        Raises:
            LineageError: If ``parent_id`` is unknown.
        """
        with self._lock:
            if parent_id is not None and parent_id not in self._nodes:
                raise LineageError(parent_id, f"Unknown parent node: {parent_id}")
            node_id = f"n-{self._next_id:06d}"
            self._next_id += 1
            self._nodes[node_id] = PromptNode(
                id=node_id,
                parent_id=parent_id,
                level=NodeLevel(level),
                phase=phase,
                label=label,
                template_id=template_id,
                prompt_text=prompt_text,
            )
            if parent_id is not None:
                self._nodes[parent_id].children.append(node_id)
        return node_id

    def complete(
        self,
        node_id: str,
        outcome: GeneratedArtifact | BaseException,
        *,
        cached: bool = False,
        provider_call: bool = False,
        error_kind: str | None = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
        cost_usd: float = 0.0,
    ) -> PromptNode:
        """Attach a provider response (or error) to a pending node.

        An artifact completes the node as ``succeeded``; an exception marks it
        ``failed``. ``error_kind`` defaults to the exception class name.

        Raises:
            LineageError: If the node is unknown or no longer pending.
        """
        with self._lock:
            node = self._require(node_id)
            if node.status is not NodeStatus.PENDING:
                raise LineageError(node_id, f"Node {node_id} is already {node.status.value}")
            node.cached = cached
            node.provider_call = provider_call
            node.input_tokens = input_tokens
            node.output_tokens = output_tokens
            node.cost_usd = cost_usd
            node.completed_at = datetime.now(UTC)
            if isinstance(outcome, BaseException):
                node.status = NodeStatus.FAILED
                node.error = NodeError(
                    kind=error_kind or type(outcome).__name__, message=str(outcome)
                )
            else:
                node.status = NodeStatus.SUCCEEDED
                node.artifact = outcome
            return node

    def reject(self, node_id: str, error_kind: str, reason: str) -> None:
        """Fail a completed node whose response was rejected by validation.

        The artifact stays attached for inspection.
        """
        with self._lock:
            node = self._require(node_id)
            if node.status is not NodeStatus.SUCCEEDED:
                raise LineageError(node_id, f"Node {node_id} is {node.status.value}, not succeeded")
            node.status = NodeStatus.FAILED
            node.error = NodeError(kind=error_kind, message=reason)

    def get(self, node_id: str) -> PromptNode:
        """Return a node. Raises LineageError if unknown."""
        with self._lock:
            return self._require(node_id)

    def __contains__(self, node_id: object) -> bool:
        with self._lock:
            return node_id in self._nodes

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def _require(self, node_id: str) -> PromptNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise LineageError(node_id, f"Unknown node: {node_id}")
        return node

    def descendants(self, node_id: str) -> set[str]:
        """Every node whose parent chain passes through ``node_id`` (excluding it)."""
        with self._lock:
            self._require(node_id)
            found: set[str] = set()
            queue = deque(self._nodes[node_id].children)
            while queue:
                current = queue.popleft()
                if current in found:
                    continue
                found.add(current)
                queue.extend(self._nodes[current].children)
            return found

    def ancestors(self, node_id: str) -> list[str]:
        """Parent chain from the immediate parent up to the root."""
        with self._lock:
            chain: list[str] = []
            parent = self._require(node_id).parent_id
            while parent is not None:
                chain.append(parent)
                parent = self._nodes[parent].parent_id
            return chain

    def mark_stale(self, node_ids: Iterable[str]) -> set[str]:
        """Mark nodes stale; returns the ids whose status actually changed."""
        changed: set[str] = set()
        with self._lock:
            for node_id in node_ids:
                node = self._require(node_id)
                if node.status is not NodeStatus.STALE:
                    node.status = NodeStatus.STALE
                    changed.add(node_id)
        if changed:
            log.debug("lineage_marked_stale", count=len(changed))
        return changed

    def invalidate(self, node_id: str) -> set[str]:
        """Mark a node and its whole subtree stale; returns the affected ids."""
        affected = {node_id} | self.descendants(node_id)
        self.mark_stale(affected)
        return affected

    def phases_owning(self, node_ids: Iterable[str]) -> set[str]:
        with self._lock:
            return {
                phase
                for node_id in node_ids
                if (phase := self._require(node_id).phase) is not None
            }

    def nodes(
        self,
        *,
        phase: str | None = None,
        status: NodeStatus | None = None,
        level: NodeLevel | None = None,
    ) -> list[PromptNode]:
        """Nodes in creation order, optionally filtered."""
        with self._lock:
            return [
                n
                for n in self._nodes.values()
                if (phase is None or n.phase == phase)
                and (status is None or n.status is status)
                and (level is None or n.level is level)
            ]

    def roots(self) -> list[PromptNode]:
        with self._lock:
            return [n for n in self._nodes.values() if n.parent_id is None]

    def status_counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in NodeStatus}
        for node in self.nodes():
            counts[node.status.value] += 1
        return counts

    def snapshot(self) -> LineageSnapshot:
        with self._lock:
            return LineageSnapshot(
                next_id=self._next_id,
                nodes=[n.model_copy(deep=True) for n in self._nodes.values()],
            )

    @classmethod
    def from_snapshot(cls, snapshot: LineageSnapshot) -> LineageTracker:
        """Rebuild a tracker from a checkpoint.

        Nodes left ``pending`` by an interrupted run are marked failed.
        """
        tracker = cls()
        for node in snapshot.nodes:
            restored = node.model_copy(deep=True)
            if restored.status is NodeStatus.PENDING:
                restored.status = NodeStatus.FAILED
                restored.error = NodeError(
                    kind="interrupted", message="Run ended before completion"
                )
            tracker._nodes[restored.id] = restored
        tracker._next_id = max(snapshot.next_id, len(tracker._nodes) + 1)
        return tracker
