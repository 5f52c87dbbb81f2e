from spek.spek_datatypes import (
    SpekError, UnknownBinding, UnknownSharedDefinition, DuplicateSharedDefinition,
    BindingCollision, InvalidOptions, UnknownAddress, Cancelled, HookFailure, Timeout,
    ContextNode, ExampleNode,
)
from spek.spek_bindings import LazyEnvironment
from spek.spek_builder import Builder, Suite
from spek.spek_config import SpekConfig, load_config
from spek.spek_reporter import Reporter, RecordingReporter, LoggingReporter, MultiReporter
from spek.spek_runtime import SpecRunner, ExecutionResult, ContextError, RunReport

__all__ = [
    "SpekError", "UnknownBinding", "UnknownSharedDefinition", "DuplicateSharedDefinition",
    "BindingCollision", "InvalidOptions", "UnknownAddress", "Cancelled", "HookFailure", "Timeout",
    "ContextNode", "ExampleNode",
    "LazyEnvironment",
    "Builder", "Suite",
    "SpekConfig", "load_config",
    "Reporter", "RecordingReporter", "LoggingReporter", "MultiReporter",
    "SpecRunner", "ExecutionResult", "ContextError", "RunReport",
]
