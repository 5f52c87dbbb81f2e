"""
Hook scheduling.

``before``/``after`` hooks of a context fire at most once per run, and only
when the context transitively holds at least one example that will actually
execute. ``before_each`` hooks wrap every example outer → inner and
``after_each`` hooks unwind inner → outer, like a stack.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set

from spek.spek_datatypes import ContextNode, ExampleNode, HookDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduledHook:
    context: ContextNode
    hook: HookDefinition

    @property
    def kind(self) -> str:
        return self.hook.kind


@dataclass
class Schedule:
    """The per-example hook invocations around one example body."""
    example: ExampleNode
    before_each: List[ScheduledHook] = field(default_factory=list)
    after_each: List[ScheduledHook] = field(default_factory=list)

    def labels(self) -> List[str]:
        """Readable invocation order, e.g. for debugging a schedule."""
        out = [f"{h.kind}:{h.context.description}" for h in self.before_each]
        out.append(f"example:{self.example.description}")
        out.extend(f"{h.kind}:{h.context.description}" for h in self.after_each)
        return out


class HookScheduler:
    """Computes hook invocations for one run over a fixed selection of examples."""

    def __init__(self, root: ContextNode, selected: Iterable[ExampleNode]):
        self.root = root
        self._selected: Set[ExampleNode] = set(selected)
        self._runnable: Dict[int, int] = {}
        self._fired: Set[tuple] = set()
        self._count(root)

    def _count(self, node: ContextNode) -> int:
        total = 0
        for child in node.children:
            if isinstance(child, ContextNode):
                total += self._count(child)
            elif child in self._selected and not child.pending:
                total += 1
        self._runnable[node.id] = total
        return total

    def runnable(self, context: ContextNode) -> int:
        """Number of selected, non-pending examples beneath ``context``."""
        return self._runnable.get(context.id, 0)

    def take(self, context: ContextNode, kind: str) -> List[ScheduledHook]:
        """Returns the ``before``/``after`` hooks due for ``context``, at most once per run."""
        if kind not in ("before", "after"):
            raise ValueError(f"take() schedules before/after hooks, not {kind!r}")
        if not self.runnable(context):
            return []
        key = (context.id, kind)
        if key in self._fired:
            return []
        self._fired.add(key)
        hooks = context.hooks[kind]
        if hooks:
            logger.debug("%d %s hook(s) due for %r", len(hooks), kind, context)
        return [ScheduledHook(context, hook) for hook in hooks]

    def schedule(self, example: ExampleNode) -> Schedule:
        contexts = example.ancestors()
        before_each = [
            ScheduledHook(ctx, hook)
            for ctx in contexts
            for hook in ctx.hooks["before_each"]
        ]
        after_each = [
            ScheduledHook(ctx, hook)
            for ctx in reversed(contexts)
            for hook in ctx.hooks["after_each"]
        ]
        return Schedule(example, before_each, after_each)
