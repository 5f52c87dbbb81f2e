"""
Registry of shared example groups and shared contexts.
"""

import logging
from typing import Callable, Dict

from spek.spek_datatypes import (
    SharedDefinition, DuplicateSharedDefinition, UnknownSharedDefinition, InvalidOptions,
)

logger = logging.getLogger(__name__)


class SharedRegistry:
    """Name → SharedDefinition. One namespace covers both kinds."""

    def __init__(self):
        self._definitions: Dict[str, SharedDefinition] = {}

    def register(self, name: str, kind: str, builder: Callable) -> SharedDefinition:
        if not isinstance(name, str) or not name:
            raise InvalidOptions(f"shared definition name must be a non-empty string, not {name!r}")
        if not callable(builder):
            raise InvalidOptions(f"shared definition {name!r} needs a callable builder")
        if name in self._definitions:
            raise DuplicateSharedDefinition(name)
        definition = SharedDefinition(name, kind, builder)
        self._definitions[name] = definition
        logger.debug("registered shared %s %r", kind, name)
        return definition

    def lookup(self, name: str, kind: str) -> SharedDefinition:
        """Finds ``name`` registered as ``kind``; a definition of the other kind does not match."""
        definition = self._definitions.get(name)
        if definition is None or definition.kind != kind:
            raise UnknownSharedDefinition(name, kind)
        return definition
