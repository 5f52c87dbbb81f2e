"""
The declaration DSL.

A ``Builder`` is the explicit cursor for one open context: every DSL call
made on it appends to, or declares on, that context. Context builders run
immediately and synchronously, so a subtree is complete when ``context``
returns. ``Suite`` is the builder of the hidden root context and owns the
tree, the shared-definition registry and the externally defined globals.
"""

import inspect
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from spek.spek_datatypes import (
    ContextNode, ExampleNode, HookDefinition, Node, SharedDefinition,
    SpekError, BindingCollision, InvalidOptions, SUBJECT,
)
from spek.spek_bindings import RESERVED_NAMES
from spek.spek_shared import SharedRegistry
from spek.spek_address import coerce_address, find_node

logger = logging.getLogger(__name__)

_MISSING = object()


def _source_location(fn):
    code = getattr(fn, "__code__", None)
    if code is None:
        return None
    return code.co_filename, code.co_firstlineno


class Builder:
    """Declares children, bindings and hooks on one context."""

    def __init__(self, suite: 'Suite', node: ContextNode):
        self._suite = suite
        self._node = node
        self._open = True

    @property
    def node(self) -> ContextNode:
        return self._node

    def _check_open(self, what: str):
        if self._suite.frozen:
            raise SpekError(f"cannot declare {what}: the suite has already been built")
        if not self._open:
            where = self._node.full_description or "<root>"
            raise SpekError(f"cannot declare {what}: context {where!r} is already closed")

    def _build(self, node: ContextNode, builder: Callable, *args):
        """Runs ``builder`` against a fresh cursor for ``node``, then closes it."""
        cursor = Builder(self._suite, node)
        try:
            outcome = builder(cursor, *args)
        finally:
            cursor._open = False
        if inspect.isawaitable(outcome):
            if inspect.iscoroutine(outcome):
                outcome.close()
            raise SpekError(f"context builder for {node.full_description!r} must be synchronous")

    # --- Tree ---

    def context(self, description: str, builder: Optional[Callable] = None, *,
                timeout: Optional[float] = None, random: Optional[bool] = None):
        """Declares a nested context. Without ``builder`` it returns a decorator."""
        if builder is None:
            def decorator(fn):
                self.context(description, fn, timeout=timeout, random=random)
                return fn
            return decorator
        self._check_open("a context")
        if not callable(builder):
            raise InvalidOptions(f"context {description!r} needs a callable builder")
        node = ContextNode(str(description), self._node, timeout=timeout, random=random,
                           location=_source_location(builder))
        self._node.append(node)
        self._build(node, builder)
        return node

    describe = context

    def example(self, description: str, body: Optional[Callable] = None, *,
                timeout: Optional[float] = None, let: Optional[Mapping[str, Any]] = None,
                pending: bool = False):
        """Declares an example. Without ``body`` (and not pending) it returns a decorator.

        ``let`` declares bindings on the example itself; they are the
        nearest definitions on its resolution path.
        """
        if body is None and not pending:
            def decorator(fn):
                self.example(description, fn, timeout=timeout, let=let)
                return fn
            return decorator
        self._check_open("an example")
        node = ExampleNode(str(description), body, self._node, timeout=timeout, pending=pending,
                           location=_source_location(body))
        for name, producer in (let or {}).items():
            self._check_name(name)
            node.define(name, producer)
        self._node.append(node)
        return node

    it = example

    def pending(self, description: str, body: Optional[Callable] = None, **options):
        """Declares an example that is reported as pending and never run."""
        return self.example(description, body, pending=True, **options)

    # --- Bindings ---

    def _check_name(self, name: str):
        if not isinstance(name, str) or not name:
            raise InvalidOptions(f"binding name must be a non-empty string, not {name!r}")
        if name in self._suite.globals:
            raise BindingCollision(name, "the suite globals")
        if name in RESERVED_NAMES:
            raise BindingCollision(name, "the binding environment")

    def set(self, name: str, producer: Any):
        """Binds ``name`` on this context. Callables are lazy, memoized thunks."""
        self._check_open(f"binding {name!r}")
        self._check_name(name)
        return self._node.define(name, producer)

    let = set

    def subject(self, name_or_producer: Any, producer: Any = _MISSING):
        """``subject(producer)`` or ``subject(name, producer)``.

        The named form binds ``name`` and makes ``subject`` resolve to it,
        so both share one memoized value.
        """
        if producer is _MISSING:
            return self.set(SUBJECT, name_or_producer)
        name = name_or_producer
        definition = self.set(name, producer)
        self._node.define(SUBJECT, lambda env: env.resolve(name))
        return definition

    # --- Hooks ---

    def _hook(self, kind: str, body: Optional[Callable], description: Optional[str], timeout: Optional[float]):
        if body is None:
            def decorator(fn):
                self._hook(kind, fn, description, timeout)
                return fn
            return decorator
        self._check_open(f"a {kind} hook")
        return self._node.add_hook(HookDefinition(kind, body, description, timeout))

    def before(self, body: Optional[Callable] = None, *, description: Optional[str] = None,
               timeout: Optional[float] = None):
        """Runs once before the first example of this context."""
        return self._hook("before", body, description, timeout)

    def after(self, body: Optional[Callable] = None, *, description: Optional[str] = None,
              timeout: Optional[float] = None):
        """Runs once after the last example of this context."""
        return self._hook("after", body, description, timeout)

    def before_each(self, body: Optional[Callable] = None, *, description: Optional[str] = None,
                    timeout: Optional[float] = None):
        return self._hook("before_each", body, description, timeout)

    def after_each(self, body: Optional[Callable] = None, *, description: Optional[str] = None,
                   timeout: Optional[float] = None):
        return self._hook("after_each", body, description, timeout)

    # --- Shared definitions ---

    def shared_examples(self, name: str, builder: Optional[Callable] = None):
        if builder is None:
            def decorator(fn):
                self.shared_examples(name, fn)
                return fn
            return decorator
        self._check_open(f"shared examples {name!r}")
        return self._suite.shared.register(name, SharedDefinition.EXAMPLE_GROUP, builder)

    def shared_context(self, name: str, builder: Optional[Callable] = None):
        if builder is None:
            def decorator(fn):
                self.shared_context(name, fn)
                return fn
            return decorator
        self._check_open(f"shared context {name!r}")
        return self._suite.shared.register(name, SharedDefinition.CONTEXT, builder)

    def it_behaves_like(self, name: str, *args, timeout: Optional[float] = None,
                        random: Optional[bool] = None) -> ContextNode:
        """Grafts a new nested context built by the shared example group ``name``."""
        self._check_open(f"it behaves like {name!r}")
        definition = self._suite.shared.lookup(name, SharedDefinition.EXAMPLE_GROUP)
        node = ContextNode(f"it behaves like {name}", self._node, timeout=timeout, random=random,
                           location=_source_location(definition.builder))
        self._node.append(node)
        self._build(node, definition.builder, *args)
        return node

    def include_context(self, name: str, *args):
        """Runs the shared context ``name`` directly against this context."""
        self._check_open(f"include context {name!r}")
        definition = self._suite.shared.lookup(name, SharedDefinition.CONTEXT)
        outcome = definition.builder(self, *args)
        if inspect.isawaitable(outcome):
            if inspect.iscoroutine(outcome):
                outcome.close()
            raise SpekError(f"shared context {name!r} must be synchronous")


class Suite(Builder):
    """Root of a spec tree.

    ``globals`` are values defined outside the DSL; they are resolvable by
    name from every body, and declaring a binding with the same name is a
    ``BindingCollision``.
    """

    def __init__(self, description: str = "", *, globals: Optional[Mapping[str, Any]] = None,
                 source: Optional[str] = None, timeout: Optional[float] = None,
                 random: Optional[bool] = None):
        self.root = ContextNode(description, None, timeout=timeout, random=random)
        self.globals: Dict[str, Any] = dict(globals or {})
        for name in self.globals:
            if name in RESERVED_NAMES:
                raise BindingCollision(name, "the binding environment")
        self.source = source
        self.shared = SharedRegistry()
        self.frozen = False
        super().__init__(self, self.root)

    def build(self, builder: Callable):
        """Runs ``builder(suite)``; usable as a decorator for a module-level spec function."""
        self._check_open("a spec")
        builder(self)
        return builder

    def freeze(self):
        if not self.frozen:
            self.frozen = True
            logger.debug("suite %r frozen with %d nodes", self.source or self.root.description,
                         sum(1 for _ in self.root.walk()))

    def find(self, address) -> Node:
        """Returns the node at ``address`` (tuple, ``"[i:j]"`` string or node)."""
        return find_node(self.root, coerce_address(address))

    def examples(self):
        return self.root.examples()
