"""
Reporter callback surface.

The runtime notifies a reporter node by node; formatting and output are the
reporter's business. ``Reporter`` is a no-op base, ``RecordingReporter``
keeps the event stream and ``LoggingReporter`` writes it to ``logging``.
"""

import logging
from typing import Any, List, Tuple

logger = logging.getLogger(__name__)


class Reporter:
    """Base reporter; every callback is optional."""

    def node_entered(self, node) -> None:
        pass

    def node_left(self, node) -> None:
        pass

    def example_result(self, node, result) -> None:
        pass

    def context_error(self, node, error) -> None:
        pass


class RecordingReporter(Reporter):
    """Collects ``(event, node, payload)`` tuples in arrival order."""

    def __init__(self):
        self.events: List[Tuple[str, Any, Any]] = []

    def node_entered(self, node):
        self.events.append(("entered", node, None))

    def node_left(self, node):
        self.events.append(("left", node, None))

    def example_result(self, node, result):
        self.events.append(("result", node, result))

    def context_error(self, node, error):
        self.events.append(("context_error", node, error))

    def names(self, event: str) -> List[str]:
        return [node.description for kind, node, _ in self.events if kind == event]


class LoggingReporter(Reporter):
    def __init__(self, log: logging.Logger = logger):
        self.log = log

    def node_entered(self, node):
        self.log.debug("enter %s %s", node.address_str, node.description)

    def node_left(self, node):
        self.log.debug("leave %s %s", node.address_str, node.description)

    def example_result(self, node, result):
        if result.status in ("passed", "pending"):
            self.log.info("%s %s (%s)", result.status, result.location, result.description)
        else:
            self.log.warning("%s", result.format_error())

    def context_error(self, node, error):
        self.log.warning("%s", error.format_error())


class MultiReporter(Reporter):
    """Fans every callback out to several reporters, in order."""

    def __init__(self, *reporters: Reporter):
        self.reporters = list(reporters)

    def node_entered(self, node):
        for r in self.reporters:
            r.node_entered(node)

    def node_left(self, node):
        for r in self.reporters:
            r.node_left(node)

    def example_result(self, node, result):
        for r in self.reporters:
            r.example_result(node, result)

    def context_error(self, node, error):
        for r in self.reporters:
            r.context_error(node, error)
