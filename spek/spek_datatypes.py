"""
Defines the core data types for the spek runtime.

This module provides the context tree nodes, the binding/hook/shared
definitions that hang off them, and the error kinds raised while building
and running a suite.
"""

import itertools
import math
import numbers
import weakref
from typing import List, Dict, Any, Optional, Union, Tuple, Callable

# =================================================================
# Errors
# =================================================================

class SpekError(Exception):
    """Base class for every error raised by spek itself."""
    pass


class UnknownBinding(SpekError, KeyError):
    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self):
        return f"no binding named {self.name!r}"


class UnknownSharedDefinition(SpekError):
    def __init__(self, name: str, kind: str):
        super().__init__(f"no shared {kind} named {name!r}")
        self.name = name
        self.kind = kind


class DuplicateSharedDefinition(SpekError):
    def __init__(self, name: str):
        super().__init__(f"shared definition {name!r} is already registered")
        self.name = name


class BindingCollision(SpekError):
    def __init__(self, name: str, owner: str):
        super().__init__(f"binding {name!r} collides with a name already provided by {owner}")
        self.name = name
        self.owner = owner


class InvalidOptions(SpekError, ValueError):
    pass


class UnknownAddress(SpekError, LookupError):
    def __init__(self, address):
        super().__init__(f"no node at address {address!r}")
        self.address = address


class Timeout(SpekError):
    def __init__(self, limit: float):
        super().__init__(f"timed out after {limit:g}s")
        self.limit = limit


class Cancelled(SpekError):
    """Awaited work inside a body or hook was cancelled by something other than the runner."""
    def __init__(self, label: str):
        super().__init__(f"{label} was cancelled")
        self.label = label


class HookFailure(SpekError):
    """An exception raised inside a before/after/before_each/after_each hook.

    The original exception is chained as ``__cause__`` and kept on ``error``.
    """
    def __init__(self, kind: str, context: 'ContextNode', hook: 'HookDefinition', error: BaseException):
        label = f" ({hook.description})" if hook.description else ""
        where = context.full_description or "<root>"
        super().__init__(f"{kind} hook{label} in {where!r} failed: {error}")
        self.kind = kind
        self.context = context
        self.hook = hook
        self.error = error

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, Timeout)


# =================================================================
# Options
# =================================================================

def validate_timeout(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidOptions(f"timeout must be a non-negative number, not {value!r}")
    if value < 0 or not math.isfinite(value):
        raise InvalidOptions(f"timeout must be a finite, non-negative number, not {value!r}")
    return float(value)


def validate_random(value: Any) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    raise InvalidOptions(f"random must be a bool, not {value!r}")


# =================================================================
# Definitions
# =================================================================

HOOK_KINDS = ("before", "after", "before_each", "after_each")

SUBJECT = "subject"


class BindingDefinition:
    """A named, lazily produced value declared on a node.

    Any callable producer is a thunk and is called with the resolving
    environment; everything else is a literal value.
    """
    __slots__ = ("name", "producer")

    def __init__(self, name: str, producer: Any):
        self.name = name
        self.producer = producer

    @property
    def is_thunk(self) -> bool:
        return callable(self.producer)

    def __repr__(self):
        kind = "thunk" if self.is_thunk else "value"
        return f"<BindingDefinition {self.name} ({kind})>"


class HookDefinition:
    __slots__ = ("kind", "body", "description", "timeout")

    def __init__(self, kind: str, body: Callable, description: Optional[str] = None, timeout: Optional[float] = None):
        if kind not in HOOK_KINDS:
            raise InvalidOptions(f"unknown hook kind {kind!r}")
        if not callable(body):
            raise InvalidOptions(f"{kind} hook body must be callable")
        self.kind = kind
        self.body = body
        self.description = description
        self.timeout = validate_timeout(timeout)

    def __repr__(self):
        if self.description:
            return f"<HookDefinition {self.kind} {self.description!r}>"
        return f"<HookDefinition {self.kind}>"


class SharedDefinition:
    __slots__ = ("name", "kind", "builder")

    EXAMPLE_GROUP = "example-group"
    CONTEXT = "context"

    def __init__(self, name: str, kind: str, builder: Callable):
        self.name = name
        self.kind = kind
        self.builder = builder

    def __repr__(self):
        return f"<SharedDefinition {self.kind} {self.name!r}>"


# =================================================================
# Tree nodes
# =================================================================

_ids = itertools.count(1)

Address = Tuple[int, ...]


class Node:
    """Common state of context and example nodes."""

    def __init__(self, description: str, parent: Optional['ContextNode'] = None,
                 timeout: Optional[float] = None, location: Optional[Tuple[str, int]] = None):
        self.id = next(_ids)
        self.description = description
        self._parent = weakref.ref(parent) if parent is not None else None
        self.timeout = validate_timeout(timeout)
        self.file, self.line = location or (None, None)
        self.address: Address = ()
        self.bindings: Dict[str, BindingDefinition] = {}

    @property
    def parent(self) -> Optional['ContextNode']:
        return self._parent() if self._parent is not None else None

    def ancestors(self) -> List['ContextNode']:
        """Returns the ancestor contexts ordered root first."""
        chain = []
        node = self.parent
        while node is not None:
            chain.append(node)
            node = node.parent
        chain.reverse()
        return chain

    def path(self) -> List['Node']:
        """Returns the execution path root → self."""
        return self.ancestors() + [self]

    @property
    def full_description(self) -> str:
        return " ".join(n.description for n in self.path() if n.description)

    def effective_timeout(self, default: float) -> float:
        """Own timeout, else the nearest ancestor's, else ``default``."""
        for node in reversed(self.path()):
            if node.timeout is not None:
                return node.timeout
        return default

    def define(self, name: str, producer: Any) -> BindingDefinition:
        if not isinstance(name, str) or not name:
            raise InvalidOptions(f"binding name must be a non-empty string, not {name!r}")
        definition = BindingDefinition(name, producer)
        # Redefinition in the same node overwrites but keeps its slot.
        self.bindings[name] = definition
        return definition

    @property
    def address_str(self) -> str:
        return "[" + ":".join(str(i) for i in self.address) + "]"


class ContextNode(Node):
    """A grouping of bindings, hooks and child nodes."""

    def __init__(self, description: str, parent: Optional['ContextNode'] = None,
                 timeout: Optional[float] = None, random: Optional[bool] = None,
                 location: Optional[Tuple[str, int]] = None):
        super().__init__(description, parent, timeout, location)
        self.random = validate_random(random)
        self.children: List[Union['ContextNode', 'ExampleNode']] = []
        self.hooks: Dict[str, List[HookDefinition]] = {kind: [] for kind in HOOK_KINDS}

    def append(self, child: Union['ContextNode', 'ExampleNode']):
        child.address = self.address + (len(self.children),)
        self.children.append(child)
        return child

    def add_hook(self, hook: HookDefinition) -> HookDefinition:
        self.hooks[hook.kind].append(hook)
        return hook

    def effective_random(self, default: bool) -> bool:
        node = self
        while node is not None:
            if node.random is not None:
                return node.random
            node = node.parent
        return default

    def walk(self):
        """Yields every descendant node in declared (pre-)order."""
        for child in self.children:
            yield child
            if isinstance(child, ContextNode):
                yield from child.walk()

    def examples(self) -> List['ExampleNode']:
        return [n for n in self.walk() if isinstance(n, ExampleNode)]

    def __repr__(self):
        return f"<ContextNode {self.address_str} {self.description!r}>"


class ExampleNode(Node):
    """A leaf holding one executable test body."""

    def __init__(self, description: str, body: Optional[Callable], parent: ContextNode,
                 timeout: Optional[float] = None, pending: bool = False,
                 location: Optional[Tuple[str, int]] = None):
        if body is not None and not callable(body):
            raise InvalidOptions(f"example body must be callable, not {body!r}")
        super().__init__(description, parent, timeout, location)
        self.body = body
        self.pending = bool(pending) or body is None

    def __repr__(self):
        return f"<ExampleNode {self.address_str} {self.description!r}>"
