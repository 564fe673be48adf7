"""
Flamegraph export.

Formats:
- FOLDED: one "frame;frame;frame weight" line per node with self weight
  (Brendan Gregg's collapsed stacks, as read by flamegraph.pl, speedscope
  and inferno)
- JSON: d3-flame-graph tree of {"name", "value", "children"}

Output is deterministic: nodes are emitted depth first in first-seen
child order. Folded output cannot carry ";" or a line break inside a
frame, so frames are percent-escaped ("%3B", "%0A", "%0D", and "%25" for
"%" itself) and parse_folded reverses it. The root has no line of its
own; CallTreeBuilder never puts self weight there.
"""

import json
import re
from enum import Enum
from typing import Any

from chtop.profiling.calltree import CallTreeNode

ROOT_NAME = "root"


class ExportFormat(str, Enum):
    FOLDED = "folded"
    JSON = "json"


_ESCAPES = str.maketrans({"%": "%25", ";": "%3B", "\n": "%0A", "\r": "%0D"})
_UNESCAPE = re.compile(r"%(25|3B|0A|0D)")


def _folded_frame(frame: str) -> str:
    return frame.translate(_ESCAPES)


def _parse_frame(text: str) -> str:
    return _UNESCAPE.sub(lambda m: chr(int(m.group(1), 16)), text)


def to_folded(root: CallTreeNode) -> str:
    lines = []
    for path, node in root.walk():
        if node.self_weight > 0:
            lines.append(f"{';'.join(_folded_frame(f) for f in path)} {node.self_weight}")
    return "".join(f"{line}\n" for line in lines)


def to_d3(node: CallTreeNode, name: str | None = None) -> dict[str, Any]:
    return {
        "name": name if name is not None else node.frame,
        "value": node.total_weight,
        "children": [to_d3(child) for child in node.children.values()],
    }


def export(root: CallTreeNode, fmt: ExportFormat = ExportFormat.FOLDED) -> bytes:
    """
    Serialize a call tree for an external flamegraph viewer.

    Args:
        root: Tree root (as returned by CallTreeBuilder.build)
        fmt: Output format

    Returns:
        UTF-8 encoded output.
    """
    if fmt is ExportFormat.FOLDED:
        return to_folded(root).encode()
    return json.dumps(to_d3(root, ROOT_NAME)).encode()


def parse_folded(data: bytes | str) -> CallTreeNode:
    """
    Rebuild a call tree from folded stacks.

    Also accepts folded output produced server-side (one
    "a;b;c weight" line per stack); repeated stacks are summed.

    Raises:
        ValueError: On a line without a positive integer weight.
    """
    text = data.decode() if isinstance(data, bytes) else data
    root = CallTreeNode()
    for lineno, line in enumerate(text.split("\n"), start=1):
        if not line.strip():
            continue
        stack, _, weight_text = line.rstrip().rpartition(" ")
        try:
            weight = int(weight_text)
        except ValueError:
            raise ValueError(f"Line {lineno}: invalid weight {weight_text!r}") from None
        if not stack or weight < 1:
            raise ValueError(f"Line {lineno}: expected 'frame;frame weight', got {line!r}")
        root.add_path([_parse_frame(f) for f in stack.split(";")], weight)
    return root
