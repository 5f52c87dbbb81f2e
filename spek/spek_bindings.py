"""
Lazy binding resolution for example and hook bodies.

Bodies never see binding names as ambient variables. They receive a
``LazyEnvironment`` and ask it for values by name; the environment searches
the execution path from the nearest node outward, invokes thunks on first
use and memoizes them for as long as the environment lives, which is
exactly one example execution or one hook invocation.
"""

import inspect
import logging
from typing import Any, Dict, List, Mapping, Optional

from spek.spek_datatypes import (
    BindingDefinition, ExampleNode, Node, UnknownBinding, SUBJECT,
)

logger = logging.getLogger(__name__)

_MISSING = object()

_POSITIONAL = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
)


def invoke(fn, env: 'LazyEnvironment'):
    """Calls ``fn`` with the environment when it needs a positional argument.

    Parameters with defaults keep their defaults, so ``lambda name=name: ...``
    captures still work.
    """
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        # Builtins without a signature get the environment.
        return fn(env)
    if any((p.kind in _POSITIONAL and p.default is p.empty)
           or p.kind is inspect.Parameter.VAR_POSITIONAL for p in params):
        return fn(env)
    return fn()


class LazyEnvironment:
    """Per-execution view of the bindings visible along a node path.

    Lookup order is nearest node → root, then the suite's externally
    defined globals. Values produced by thunks are cached for the life of
    this object only.
    """

    def __init__(self, path: List[Node], globals: Optional[Mapping[str, Any]] = None):
        if not path:
            raise ValueError("an environment needs at least one node on its path")
        self._path = list(path)
        self._globals: Mapping[str, Any] = globals or {}
        self._memo: Dict[str, Any] = {}
        self._resolving: List[str] = []

    @property
    def node(self) -> Node:
        """The node this environment was created for (example or hook context)."""
        return self._path[-1]

    @property
    def example(self) -> Optional[ExampleNode]:
        node = self._path[-1]
        return node if isinstance(node, ExampleNode) else None

    def find_definition(self, name: str) -> Optional[BindingDefinition]:
        for node in reversed(self._path):
            definition = node.bindings.get(name)
            if definition is not None:
                return definition
        return None

    def resolve(self, name: str) -> Any:
        if name in self._memo:
            return self._memo[name]
        definition = self.find_definition(name)
        if definition is None:
            if name in self._globals:
                return self._globals[name]
            raise UnknownBinding(name)
        if not definition.is_thunk:
            return definition.producer
        if name in self._resolving:
            chain = " -> ".join(self._resolving + [name])
            raise RecursionError(f"binding cycle detected: {chain}")
        self._resolving.append(name)
        try:
            value = invoke(definition.producer, self)
        finally:
            self._resolving.pop()
        self._memo[name] = value
        logger.debug("memoized %s for %r", name, self.node)
        return value

    def get(self, name: str, default: Any = None) -> Any:
        """Resolves ``name``, returning ``default`` when nothing defines it."""
        try:
            return self.resolve(name)
        except UnknownBinding as e:
            # Only swallow the miss for this name, not one raised by a thunk.
            if e.name != name:
                raise
            return default

    def names(self) -> List[str]:
        """Every binding name visible from this environment, nearest first."""
        seen: Dict[str, None] = {}
        for node in reversed(self._path):
            for name in node.bindings:
                seen.setdefault(name, None)
        for name in self._globals:
            seen.setdefault(name, None)
        return list(seen)

    @property
    def subject(self) -> Any:
        return self.resolve(SUBJECT)

    def __getitem__(self, name: str) -> Any:
        return self.resolve(name)

    def __contains__(self, name: Any) -> bool:
        if not isinstance(name, str):
            return False
        return self.find_definition(name) is not None or name in self._globals

    def __getattr__(self, name: str):
        """Attribute-style lookup: ``env.value`` is ``env.resolve('value')``."""
        if name.startswith("_"):
            raise AttributeError(name)
        return self.resolve(name)

    def __repr__(self):
        return f"<LazyEnvironment {self.node!r} memo={sorted(self._memo)}>"


# Public attributes of the environment; a binding with one of these names
# would be unreachable through attribute access.
RESERVED_NAMES = frozenset(
    n for n in dir(LazyEnvironment) if not n.startswith("_")
) - {SUBJECT}
