"""flowspec — graphs of prep | exec | post nodes, in code or as data.

Two layers:
  every node is a small unit of work  →  prep | exec | post
  nodes connect via named labels      →  post returns the label to follow
  a shared context is the only channel between nodes

and a compiler that turns a declarative graph description (JSON / YAML,
hand-written or LLM-generated) into the same runtime.

Public API
----------
from flowspec import Node, Flow, Store, Compiler, MetaCreator
"""

from flowspec.compiler import CompiledGraph, Compiler
from flowspec.diagnostics import Diagnostic, Diagnostics
from flowspec.errors import (
    ConfigError,
    EvaluationError,
    ExecutionError,
    FlowspecError,
    GenerationError,
    MissingCollaboratorError,
)
from flowspec.flow import AsyncBatchFlow, AsyncFlow, AsyncParallelBatchFlow, BatchFlow, Flow
from flowspec.meta import GenerationResult, MetaCreator
from flowspec.node import AsyncBatchNode, AsyncNode, AsyncParallelBatchNode, BatchNode, Node
from flowspec.store import Store
from flowspec.template import Evaluator
from flowspec.validator import ValidationResult, validate

__all__ = [
    "Node", "BatchNode", "AsyncNode", "AsyncBatchNode", "AsyncParallelBatchNode",
    "Flow", "BatchFlow", "AsyncFlow", "AsyncBatchFlow", "AsyncParallelBatchFlow",
    "Store", "Compiler", "CompiledGraph", "Evaluator", "MetaCreator", "GenerationResult",
    "Diagnostic", "Diagnostics", "ValidationResult", "validate",
    "FlowspecError", "ConfigError", "EvaluationError", "ExecutionError",
    "MissingCollaboratorError", "GenerationError",
]
__version__ = "0.1.0"
