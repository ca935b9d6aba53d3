#!/usr/bin/env python3
"""
Diagram Model — Typed Intermediate Representation for PlantUML Diagrams

Shared schema produced by the PlantUML parsers and consumed by the layout
engine and both renderers (draw.io XML, SVG preview).

A model is built in one top-to-bottom pass over the source, frozen once the
parser returns, and is read-only afterwards. Coordinates never live on the
model; the layout engine returns them as a separate mapping.
"""

import json
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

MODEL_SCHEMA_VERSION = "1.0.0"

DIAGRAM_KINDS = (
    "class", "sequence", "state", "mindmap",
    "er", "deployment", "usecase", "activity",
)

# Activity node type tags
ACTIVITY_START = "start"
ACTIVITY_END = "end"
ACTIVITY_ACTION = "action"
ACTIVITY_DECISION = "decision"
ACTIVITY_MERGE = "merge"
ACTIVITY_FORK = "fork"
ELSE_MARKER = "else_marker"
ELSEIF_MARKER = "elseif_marker"
MARKER_TYPES = (ELSE_MARKER, ELSEIF_MARKER)


# ──────────────────────────────────────────────────────────────────
# Dataclasses
# ──────────────────────────────────────────────────────────────────

@dataclass
class Member:
    """A class attribute or method."""
    name: str
    type: str = ""
    visibility: str = "+"
    is_method: bool = False
    is_static: bool = False
    is_abstract: bool = False

    def display(self) -> str:
        text = f"{self.visibility} {self.name}" if self.visibility else self.name
        if self.type:
            text += f": {self.type}"
        return text


@dataclass
class EntityAttribute:
    """A column of an ER entity."""
    name: str
    type: str = ""
    primary_key: bool = False
    foreign_key: bool = False
    mandatory: bool = False

    def display(self) -> str:
        prefix = "PK " if self.primary_key else ("FK " if self.foreign_key else "")
        star = "*" if self.mandatory else ""
        text = f"{prefix}{star}{self.name}"
        if self.type:
            text += f": {self.type}"
        return text


@dataclass
class DiagramNode:
    name: str
    label: str
    node_type: str = ""
    # activity decisions keep their flavour here: "if", "while" or "fork"
    stereotype: str = ""
    color: Optional[str] = None
    # class / er
    attributes: List[Member] = field(default_factory=list)
    methods: List[Member] = field(default_factory=list)
    columns: List[EntityAttribute] = field(default_factory=list)
    # sequence / usecase
    is_actor: bool = False
    # state
    description: List[str] = field(default_factory=list)
    # mindmap
    level: int = 0
    side: str = ""
    # containment (deployment, state composites, mindmap tree, note anchors)
    parent: Optional[str] = None
    # sequence note row
    order: int = 0
    # activity
    yes_branch: str = ""
    branch_label: str = ""
    related_decision: Optional[str] = None
    swimlane: Optional[str] = None
    partition: Optional[str] = None
    note: str = ""

    @property
    def is_marker(self) -> bool:
        return self.node_type in MARKER_TYPES


@dataclass
class DiagramEdge:
    source: str
    target: str
    rel_type: str = "association"
    label: str = ""
    style: str = "solid"
    arrow_start: bool = False
    arrow_end: bool = True
    source_cardinality: str = ""
    target_cardinality: str = ""
    sequence_order: int = 0

    @property
    def cardinality(self) -> str:
        if not (self.source_cardinality or self.target_cardinality):
            return ""
        return f"{self.source_cardinality or '?'}:{self.target_cardinality or '?'}"


@dataclass
class NodeGroup:
    """Swimlane or partition: a labelled index range over the node sequence."""
    id: str
    label: str
    first_index: int = 0
    last_index: int = -1
    color: Optional[str] = None

    def extend_to(self, index: int) -> None:
        if self.last_index < self.first_index:
            self.first_index = index
        self.last_index = index


@dataclass
class DiagramModel:
    kind: str = "class"
    nodes: List[DiagramNode] = field(default_factory=list)
    edges: List[DiagramEdge] = field(default_factory=list)
    swimlanes: List[NodeGroup] = field(default_factory=list)
    partitions: List[NodeGroup] = field(default_factory=list)
    title: str = ""
    diagnostics: List[str] = field(default_factory=list)
    _index: Dict[str, DiagramNode] = field(default_factory=dict, repr=False, compare=False)
    _frozen: bool = field(default=False, repr=False, compare=False)

    # ── symbol table ────────────────────────────────────────────

    def get_node(self, name: str) -> Optional[DiagramNode]:
        return self._index.get(name)

    def find_by_label(self, label: str) -> Optional[DiagramNode]:
        for node in self.nodes:
            if node.label == label:
                return node
        return None

    def add_node(self, node: DiagramNode) -> DiagramNode:
        """Register a node. An existing node with the same name wins."""
        self._check_mutable()
        existing = self._index.get(node.name)
        if existing is not None:
            return existing
        self.nodes.append(node)
        self._index[node.name] = node
        return node

    def ensure_node(self, name: str, **defaults: Any) -> DiagramNode:
        """Get-or-create: relations to undeclared names declare them implicitly."""
        existing = self._index.get(name)
        if existing is not None:
            return existing
        defaults.setdefault("label", name)
        return self.add_node(DiagramNode(name=name, **defaults))

    def add_edge(self, edge: DiagramEdge) -> DiagramEdge:
        self._check_mutable()
        self.edges.append(edge)
        return edge

    def note_unmatched(self, number: int, text: str) -> None:
        self._check_mutable()
        self.diagnostics.append(f"line {number}: {text}")

    # ── lifecycle ───────────────────────────────────────────────

    def freeze(self) -> "DiagramModel":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RuntimeError("diagram model is frozen")

    def is_empty(self) -> bool:
        return not self.nodes

    def node_position(self, name: str) -> int:
        for i, node in enumerate(self.nodes):
            if node.name == name:
                return i
        return -1


# ──────────────────────────────────────────────────────────────────
# JSON Serialization
# ──────────────────────────────────────────────────────────────────

def to_json(model: DiagramModel) -> dict:
    """Serialize a DiagramModel to a JSON-compatible dict."""
    data = asdict(model)
    data.pop("_index", None)
    data.pop("_frozen", None)
    data["schema_version"] = MODEL_SCHEMA_VERSION
    return data


def from_json(data: dict) -> DiagramModel:
    """Deserialize a dict (from JSON) into a frozen DiagramModel."""
    node_fields = {f.name for f in DiagramNode.__dataclass_fields__.values()}
    edge_fields = {f.name for f in DiagramEdge.__dataclass_fields__.values()}

    model = DiagramModel(kind=data.get("kind", "class"), title=data.get("title", ""))
    for n in data.get("nodes", []):
        values = {k: v for k, v in n.items() if k in node_fields}
        values["attributes"] = [Member(**m) for m in values.get("attributes", [])]
        values["methods"] = [Member(**m) for m in values.get("methods", [])]
        values["columns"] = [EntityAttribute(**c) for c in values.get("columns", [])]
        model.add_node(DiagramNode(**values))
    for e in data.get("edges", []):
        model.add_edge(DiagramEdge(**{k: v for k, v in e.items() if k in edge_fields}))
    model.swimlanes = [NodeGroup(**g) for g in data.get("swimlanes", [])]
    model.partitions = [NodeGroup(**g) for g in data.get("partitions", [])]
    model.diagnostics = list(data.get("diagnostics", []))
    return model.freeze()


def save_model(model: DiagramModel, path: str) -> None:
    """Write a DiagramModel to a .model.json file."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with open(out, "w", encoding="utf-8") as f:
        json.dump(to_json(model), f, indent=2, default=str)


def load_model(path: str) -> DiagramModel:
    """Read a .model.json file and return a frozen DiagramModel."""
    with open(path, "r", encoding="utf-8") as f:
        return from_json(json.load(f))


# ──────────────────────────────────────────────────────────────────
# Summary
# ──────────────────────────────────────────────────────────────────

def summarize(model: DiagramModel) -> str:
    """One-line human summary used by the CLI and server logs."""
    visible = [n for n in model.nodes if not n.is_marker]
    parts = [f"{model.kind} diagram", f"{len(visible)} elements", f"{len(model.edges)} relations"]
    if model.swimlanes:
        parts.append(f"{len(model.swimlanes)} swimlanes")
    if model.diagnostics:
        parts.append(f"{len(model.diagnostics)} unrecognized lines")
    return ", ".join(parts)


def main() -> int:
    import argparse
    parser = argparse.ArgumentParser(description="Diagram model utilities")
    parser.add_argument("file", help="Path to .model.json")
    args = parser.parse_args()

    model = load_model(args.file)
    print(json.dumps(to_json(model), indent=2))
    print(f"  {summarize(model)}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
