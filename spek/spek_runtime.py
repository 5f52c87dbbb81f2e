# spek_runtime.py

import asyncio
import inspect
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Literal, Optional, Set, Union

from spek.spek_datatypes import (
    Address, ContextNode, ExampleNode, Node, Cancelled, HookFailure, Timeout,
)
from spek.spek_bindings import LazyEnvironment, invoke
from spek.spek_hooks import HookScheduler, ScheduledHook
from spek.spek_address import format_address
from spek.spek_config import SpekConfig
from spek.spek_reporter import Reporter

logger = logging.getLogger(__name__)

Status = Literal['passed', 'failed', 'errored', 'timedOut', 'pending']

# ===================================================================
# 1. Results
# ===================================================================

def _describe_error(error: BaseException) -> str:
    text = f"{type(error).__name__}: {error}"
    if isinstance(error, HookFailure):
        inner = error.error
        text += f"\n    caused by {type(inner).__name__}: {inner}"
    return text


@dataclass
class ExecutionResult:
    """The outcome of one example."""
    status: Status
    description: str
    address: Address
    file: Optional[str] = None
    error: Optional[BaseException] = None
    elapsed: float = 0.0

    @property
    def location(self) -> str:
        return f"{self.file or ''}{format_address(self.address)}"

    @property
    def ok(self) -> bool:
        return self.status in ('passed', 'pending')

    def format_error(self) -> str:
        """Formats a failure as ``status location description`` plus the error."""
        if self.ok:
            return ""
        msg = f"{self.status} {self.location} {self.description}"
        if self.error is not None:
            msg += "\n  " + _describe_error(self.error)
        return msg


@dataclass
class ContextError:
    """A before/after hook failure recorded against a context."""
    description: str
    address: Address
    kind: str
    error: BaseException
    file: Optional[str] = None

    @property
    def location(self) -> str:
        return f"{self.file or ''}{format_address(self.address)}"

    def format_error(self) -> str:
        where = self.description or "<root>"
        return f"errored {self.location} {where} ({self.kind})\n  " + _describe_error(self.error)


@dataclass
class RunReport:
    """Everything one run produced, in execution order."""
    results: List[ExecutionResult] = field(default_factory=list)
    context_errors: List[ContextError] = field(default_factory=list)
    seed: Optional[int] = None
    elapsed: float = 0.0

    def count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def ok(self) -> bool:
        return not self.context_errors and all(r.ok for r in self.results)

    def summary(self) -> dict:
        return {
            "total": len(self.results),
            "passed": self.count("passed"),
            "failed": self.count("failed"),
            "errored": self.count("errored"),
            "timedOut": self.count("timedOut"),
            "pending": self.count("pending"),
            "context-errors": len(self.context_errors),
            "seed": self.seed,
        }

    def format_summary(self) -> str:
        s = self.summary()
        parts = [f"{s[k]} {k}" for k in ("passed", "failed", "errored", "timedOut", "pending") if s[k]]
        if s["context-errors"]:
            parts.append(f"{s['context-errors']} context error(s)")
        line = ", ".join(parts) or "0 examples"
        return f"{line} in {self.elapsed:.3f}s (seed {self.seed})"


# ===================================================================
# 2. The engine
# ===================================================================

Target = Union[str, Address, Node]


class SpecRunner:
    """Runs a built Suite: one example at a time, depth first."""

    def __init__(self, suite, config: Optional[SpekConfig] = None, reporter: Optional[Reporter] = None):
        self.suite = suite
        self.config = config or SpekConfig()
        self.reporter = reporter or Reporter()
        # Timed-out work the runner stopped waiting for.
        self.abandoned_tasks: Set[asyncio.Future] = set()
        self._random = random.Random()
        self._scheduler: Optional[HookScheduler] = None
        self._selected: Set[ExampleNode] = set()
        self._selected_contexts: Set[ContextNode] = set()

    # --- Selection ---

    def _normalize_targets(self, only) -> List[Target]:
        if isinstance(only, (str, Node)):
            return [only]
        if isinstance(only, tuple) and all(isinstance(i, int) for i in only):
            return [only]
        return list(only)

    def select(self, only: Optional[Iterable[Target]] = None) -> List[ExampleNode]:
        """Examples (pending included) under the requested addresses, in declared order."""
        if only is None:
            return self.suite.root.examples()
        chosen: dict = {}
        for target in self._normalize_targets(only):
            node = self.suite.find(target)
            found = [node] if isinstance(node, ExampleNode) else node.examples()
            for example in found:
                chosen.setdefault(example, None)
        return list(chosen)

    def _in_selection(self, node: Node) -> bool:
        if isinstance(node, ExampleNode):
            return node in self._selected
        return node in self._selected_contexts

    # --- Run ---

    async def run(self, only: Optional[Iterable[Target]] = None) -> RunReport:
        """Runs the suite (or the subtrees at ``only``) and returns a RunReport."""
        self.suite.freeze()
        selected = self.select(only)
        self._selected = set(selected)
        self._selected_contexts = {ctx for example in selected for ctx in example.ancestors()}
        self._scheduler = HookScheduler(self.suite.root, selected)

        seed = self.config.seed if self.config.seed is not None else random.randrange(2 ** 32)
        self._random = random.Random(seed)
        report = RunReport(seed=seed)

        logger.debug("running %d example(s), random=%s, seed=%d",
                     len(selected), self.config.random, seed)
        started = time.perf_counter()
        if self.suite.root in self._selected_contexts:
            await self._visit_context(self.suite.root, report)
        report.elapsed = time.perf_counter() - started
        logger.info("%s", report.format_summary())
        return report

    def run_sync(self, only: Optional[Iterable[Target]] = None) -> RunReport:
        return asyncio.run(self.run(only))

    def _ordered(self, node: ContextNode) -> List[Node]:
        children = [c for c in node.children if self._in_selection(c)]
        if node.effective_random(self.config.random):
            self._random.shuffle(children)
        return children

    async def _visit_context(self, node: ContextNode, report: RunReport):
        is_root = node is self.suite.root
        if not is_root:
            self.reporter.node_entered(node)
        failure = await self._run_context_hooks(node, "before", report)
        for child in self._ordered(node):
            if failure is not None:
                self._skip(child, failure, report)
            elif isinstance(child, ContextNode):
                await self._visit_context(child, report)
            else:
                await self._visit_example(child, report)
        # after hooks still run when before failed, to release partial setup
        await self._run_context_hooks(node, "after", report)
        if not is_root:
            self.reporter.node_left(node)

    async def _visit_example(self, example: ExampleNode, report: RunReport):
        self.reporter.node_entered(example)
        if example.pending:
            result = self._result(example, "pending")
        else:
            result = await self._execute(example)
        self._record(example, result, report)

    def _record(self, example: ExampleNode, result: ExecutionResult, report: RunReport):
        report.results.append(result)
        logger.debug("%s %s", result.status, result.location)
        self.reporter.example_result(example, result)
        self.reporter.node_left(example)

    def _skip(self, node: Node, failure: HookFailure, report: RunReport):
        """Marks every selected example under ``node`` errored without running it."""
        self.reporter.node_entered(node)
        if isinstance(node, ContextNode):
            for child in self._ordered(node):
                self._skip(child, failure, report)
            self.reporter.node_left(node)
        elif node.pending:
            self._record(node, self._result(node, "pending"), report)
        else:
            self._record(node, self._result(node, "errored", failure), report)

    def _result(self, example: ExampleNode, status: Status,
                error: Optional[BaseException] = None, elapsed: float = 0.0) -> ExecutionResult:
        return ExecutionResult(
            status=status,
            description=example.full_description,
            address=example.address,
            file=self.suite.source,
            error=error,
            elapsed=elapsed,
        )

    # --- Hooks ---

    async def _run_context_hooks(self, node: ContextNode, kind: str, report: RunReport) -> Optional[HookFailure]:
        for scheduled in self._scheduler.take(node, kind):
            failure = await self._run_hook(scheduled)
            if failure is not None:
                error = ContextError(
                    description=node.full_description,
                    address=node.address,
                    kind=kind,
                    error=failure,
                    file=self.suite.source,
                )
                report.context_errors.append(error)
                logger.warning("%s", error.format_error())
                self.reporter.context_error(node, error)
                return failure
        return None

    async def _run_hook(self, scheduled: ScheduledHook) -> Optional[HookFailure]:
        ctx, hook = scheduled.context, scheduled.hook
        # Each invocation resolves against the hook's own context path.
        env = LazyEnvironment(ctx.path(), self.suite.globals)
        limit = hook.timeout if hook.timeout is not None else ctx.effective_timeout(self.config.timeout)
        try:
            await self._settle(hook.body, env, limit, f"{hook.kind} hook of {ctx!r}")
        except Exception as e:
            failure = HookFailure(hook.kind, ctx, hook, e)
            failure.__cause__ = e
            return failure
        return None

    @staticmethod
    def _hook_status(failure: HookFailure) -> Status:
        return "timedOut" if failure.timed_out else "errored"

    # --- Examples ---

    async def _execute(self, example: ExampleNode) -> ExecutionResult:
        schedule = self._scheduler.schedule(example)
        started = time.perf_counter()
        status: Status = "passed"
        error: Optional[BaseException] = None

        failed_at: Optional[ContextNode] = None
        for scheduled in schedule.before_each:
            failure = await self._run_hook(scheduled)
            if failure is not None:
                status, error = self._hook_status(failure), failure
                failed_at = scheduled.context
                break

        if error is None:
            env = LazyEnvironment(example.path(), self.suite.globals)
            limit = example.effective_timeout(self.config.timeout)
            try:
                await self._settle(example.body, env, limit, repr(example))
            except Timeout as e:
                status, error = "timedOut", e
            except Exception as e:
                status, error = "failed", e

        unwind = schedule.after_each
        if failed_at is not None:
            # Only contexts whose before_each hooks all completed are unwound.
            ancestors = example.ancestors()
            guarded = set(ancestors[:ancestors.index(failed_at)])
            unwind = [h for h in unwind if h.context in guarded]
        for scheduled in unwind:
            failure = await self._run_hook(scheduled)
            if failure is None:
                continue
            if error is None:
                status, error = self._hook_status(failure), failure
            else:
                logger.warning("%s also failed for %r after an earlier failure", failure, example)

        return self._result(example, status, error, time.perf_counter() - started)

    async def _settle(self, fn, env: LazyEnvironment, limit: float, label: str) -> Any:
        """Calls ``fn`` and waits for it to settle, racing awaitables against ``limit``.

        A limit of 0 waits forever. An awaitable that misses its limit is
        abandoned, not killed: it keeps running and is tracked in
        ``abandoned_tasks``.
        """
        started = time.perf_counter()
        outcome = invoke(fn, env)
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            try:
                done, _ = await asyncio.wait({task}, timeout=limit or None)
            except asyncio.CancelledError:
                # The run itself is being cancelled; take the body down with it.
                task.cancel()
                raise
            if task not in done:
                self._abandon(task, label)
                raise Timeout(limit)
            if task.cancelled():
                raise Cancelled(label)
            return task.result()
        # A synchronous body cannot be interrupted; it can only be judged late.
        if limit and time.perf_counter() - started > limit:
            raise Timeout(limit)
        return outcome

    # --- Abandoned work ---

    def _abandon(self, task: asyncio.Future, label: str):
        self.abandoned_tasks.add(task)
        task.add_done_callback(self._forget)
        logger.warning("stopped waiting for %s; its work is still running", label)

    def _forget(self, task: asyncio.Future):
        self.abandoned_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("abandoned task finished with %r", task.exception())

    def cancel_abandoned(self) -> int:
        """Cancels every abandoned task; returns how many were still pending."""
        count = len(self.abandoned_tasks)
        for task in list(self.abandoned_tasks):
            task.cancel()
        self.abandoned_tasks.clear()
        return count
