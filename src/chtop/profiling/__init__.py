"""
Stack-sample aggregation engine.

This module provides:
- StackSampleCollector: samples from system.trace_log / system.stack_trace
- SymbolResolver: per-host address resolution with hex fallback
- CallTreeBuilder, CallTreeNode: weighted call trees
- LiveFlamegraph: continuously rebuilt tree of live stacks
- export, parse_folded, ExportFormat: flamegraph serialization
"""

from chtop.profiling.calltree import CallTreeBuilder, CallTreeNode, LiveFlamegraph
from chtop.profiling.collector import StackSampleCollector, trace_template
from chtop.profiling.export import ExportFormat, export, parse_folded
from chtop.profiling.symbols import SymbolResolver

__all__ = [
    "CallTreeBuilder",
    "CallTreeNode",
    "ExportFormat",
    "LiveFlamegraph",
    "StackSampleCollector",
    "SymbolResolver",
    "export",
    "parse_folded",
    "trace_template",
]
