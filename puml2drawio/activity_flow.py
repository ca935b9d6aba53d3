#!/usr/bin/env python3
"""
Activity Flow Reconstructor

Turns activity-diagram lines into an ordered node sequence and then derives
the control-flow edges from it in a second pass.

Pass 1 (tokenizer + branch stack):
  start / stop / actions / if-elseif-else-endif / while-endwhile /
  fork-fork again-end fork / swimlanes / partitions / notes.
  Open constructs live on an explicit LIFO stack of frames. Closers emit a
  merge (or fork join) that names its decision via related_decision; else
  branches emit marker nodes that are never drawn.

Pass 2 (edge builder, build_flow_edges):
  fall-through, skip-to-merge at branch ends, loop back edges, labelled
  decision branches, implicit else edges and loop exits.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from puml2drawio.diagram_model import (
    ACTIVITY_ACTION, ACTIVITY_DECISION, ACTIVITY_END, ACTIVITY_FORK,
    ACTIVITY_MERGE, ACTIVITY_START, ELSE_MARKER, ELSEIF_MARKER,
    DiagramEdge, DiagramModel, DiagramNode, NodeGroup,
)
from puml2drawio.plantuml_to_model import SourceLine, clean_label, collect_block, resolve_color


# ─── Token patterns ───────────────────────────────────────────────

_START_RE = re.compile(r'^start$', re.IGNORECASE)
_STOP_RE = re.compile(r'^(?:stop|end|kill|detach)$', re.IGNORECASE)
_ACTION_RE = re.compile(r'^(?P<color>#\w+)?:(?P<body>.*)[;|<>/\]}]$', re.DOTALL)
_ACTION_OPEN_RE = re.compile(r'^(?P<color>#\w+)?:(?P<body>.*)$')
_ACTION_TERMINATORS = (';', '|', '<', '>', '/', ']', '}')
_IF_RE = re.compile(
    r'^if\s*\((?P<cond>.*?)\)\s*(?:is\s*\((?P<is>[^)]*)\)\s*)?(?:then\s*(?:\((?P<label>[^)]*)\))?)?\s*$',
    re.IGNORECASE,
)
_ELSEIF_RE = re.compile(
    r'^else\s*if\s*\((?P<cond>.*?)\)\s*(?:is\s*\((?P<is>[^)]*)\)\s*)?(?:then\s*(?:\((?P<label>[^)]*)\))?)?\s*$',
    re.IGNORECASE,
)
_ELSE_RE = re.compile(r'^else(?:\s*\((?P<label>[^)]*)\))?$', re.IGNORECASE)
_ENDIF_RE = re.compile(r'^end\s*if$', re.IGNORECASE)
_WHILE_RE = re.compile(r'^while\s*\((?P<cond>.*?)\)\s*(?:is\s*\((?P<label>[^)]*)\))?\s*$', re.IGNORECASE)
_ENDWHILE_RE = re.compile(r'^end\s*while(?:\s*\((?P<label>[^)]*)\))?$', re.IGNORECASE)
_FORK_RE = re.compile(r'^fork$', re.IGNORECASE)
_FORK_AGAIN_RE = re.compile(r'^fork\s+again$', re.IGNORECASE)
_END_FORK_RE = re.compile(r'^end\s*(?:fork|merge)(?:\s*\{[^}]*\})?$', re.IGNORECASE)
_SWIMLANE_RE = re.compile(r'^\|(?:(?P<color>#?\w+)\|)?(?P<label>[^|]+)\|$')
_PARTITION_RE = re.compile(
    r'^partition\s+(?:"(?P<quoted>[^"]+)"|(?P<name>[^{#]+?))\s*(?P<color>#\w+)?\s*\{?\s*$',
    re.IGNORECASE,
)
_NOTE_RE = re.compile(r'^(?:floating\s+)?note\s+(?:left|right)(?:\s*:\s*(?P<text>.*))?$', re.IGNORECASE)
_END_NOTE_RE = re.compile(r'^end\s*note$', re.IGNORECASE)
_DETACH_ARROW_RE = re.compile(r'^-+>(?:\s*(?P<label>.*?);?)?$')


# ─── Branch stack ─────────────────────────────────────────────────

@dataclass
class BranchFrame:
    decision: str
    kind: str  # if | while | fork
    markers: List[str] = field(default_factory=list)


class ActivityBuilder:
    """Pass 1: emits activity nodes in source order and tracks open constructs."""

    def __init__(self, model: DiagramModel):
        self.model = model
        self.stack: List[BranchFrame] = []
        self.lane: Optional[NodeGroup] = None
        self.partitions: List[NodeGroup] = []

    # ── node emission ──────────────────────────────────────────

    def emit(self, node_type: str, label: str = "", **fields) -> DiagramNode:
        index = len(self.model.nodes)
        node = DiagramNode(name=f"a{index}", label=label, node_type=node_type, **fields)
        if self.lane is not None:
            node.swimlane = self.lane.id
            self.lane.extend_to(index)
        if self.partitions:
            node.partition = self.partitions[-1].id
            for group in self.partitions:
                group.extend_to(index)
        return self.model.add_node(node)

    def last_visible(self) -> Optional[DiagramNode]:
        for node in reversed(self.model.nodes):
            if not node.is_marker:
                return node
        return None

    def attach_note(self, text: str) -> None:
        target = self.last_visible()
        if target is None:
            return
        target.note = f"{target.note}\n{text}" if target.note else text

    # ── constructs ─────────────────────────────────────────────

    def open_decision(self, kind: str, condition: str, yes_branch: str) -> None:
        decision = self.emit(ACTIVITY_DECISION, condition, yes_branch=yes_branch, stereotype=kind)
        self.stack.append(BranchFrame(decision.name, kind))

    def open_fork(self) -> None:
        opener = self.emit(ACTIVITY_FORK, stereotype='fork')
        self.stack.append(BranchFrame(opener.name, 'fork'))

    def add_branch(self, marker_type: str, number: int, text: str, kinds,
                   label: str = "", branch_label: str = "") -> None:
        if not self.stack or self.stack[-1].kind not in kinds:
            self.model.note_unmatched(number, text)
            return
        frame = self.stack[-1]
        marker = self.emit(marker_type, label, branch_label=branch_label, related_decision=frame.decision)
        frame.markers.append(marker.name)

    def close(self, number: int, text: str, kinds, label: str = "") -> None:
        if not self.stack or self.stack[-1].kind not in kinds:
            self.model.note_unmatched(number, text)
            return
        self._close_frame(self.stack.pop(), label)

    def _close_frame(self, frame: BranchFrame, label: str = "") -> None:
        if frame.kind == 'fork':
            self.emit(ACTIVITY_FORK, related_decision=frame.decision)
        else:
            self.emit(ACTIVITY_MERGE, branch_label=label, related_decision=frame.decision)

    def finish(self, last_number: int) -> None:
        while self.stack:
            frame = self.stack.pop()
            self.model.diagnostics.append(f"line {last_number}: unclosed {frame.kind} block")
            self._close_frame(frame)

    # ── lanes and partitions ───────────────────────────────────

    def switch_lane(self, label: str, color: Optional[str]) -> None:
        for lane in self.model.swimlanes:
            if lane.id == label:
                self.lane = lane
                return
        self.lane = NodeGroup(id=label, label=label, color=resolve_color(color))
        self.model.swimlanes.append(self.lane)

    def open_partition(self, label: str, color: Optional[str]) -> None:
        group_id = label
        existing = {g.id for g in self.model.partitions}
        suffix = 2
        while group_id in existing:
            group_id = f"{label} ({suffix})"
            suffix += 1
        group = NodeGroup(id=group_id, label=label, color=resolve_color(color))
        self.model.partitions.append(group)
        self.partitions.append(group)

    def close_partition(self, number: int, text: str) -> None:
        if not self.partitions:
            self.model.note_unmatched(number, text)
            return
        self.partitions.pop()


def _read_action(lines: List[SourceLine], i: int) -> tuple:
    """Read a possibly multi-line action. Returns (label, color, last index)."""
    text = lines[i].text
    m = _ACTION_RE.match(text)
    if m:
        return clean_label(m.group('body')), m.group('color'), i
    m = _ACTION_OPEN_RE.match(text)
    parts = [m.group('body')]
    j = i
    while j + 1 < len(lines):
        j += 1
        part = lines[j].text
        if part.endswith(_ACTION_TERMINATORS):
            parts.append(part[:-1])
            break
        parts.append(part)
    return clean_label('\n'.join(p.strip() for p in parts)), m.group('color'), j


def parse_activity(lines: List[SourceLine], model: DiagramModel) -> None:
    """Build the activity node sequence and its control-flow edges."""
    builder = ActivityBuilder(model)

    i = 0
    while i < len(lines):
        line = lines[i]
        text = line.text

        if _START_RE.match(text):
            builder.emit(ACTIVITY_START)
        elif _STOP_RE.match(text):
            builder.emit(ACTIVITY_END)
        elif _ACTION_OPEN_RE.match(text):
            label, color, i = _read_action(lines, i)
            builder.emit(ACTIVITY_ACTION, label, color=resolve_color(color))
        elif _IF_RE.match(text):
            m = _IF_RE.match(text)
            builder.open_decision('if', clean_label(m.group('cond')),
                                  clean_label(m.group('label') or m.group('is')))
        elif _ELSEIF_RE.match(text):
            m = _ELSEIF_RE.match(text)
            builder.add_branch(ELSEIF_MARKER, line.number, text, ('if',),
                               clean_label(m.group('cond')), clean_label(m.group('label') or m.group('is')))
        elif _ELSE_RE.match(text):
            m = _ELSE_RE.match(text)
            builder.add_branch(ELSE_MARKER, line.number, text, ('if',),
                               branch_label=clean_label(m.group('label')))
        elif _ENDIF_RE.match(text):
            builder.close(line.number, text, ('if',))
        elif _WHILE_RE.match(text):
            m = _WHILE_RE.match(text)
            builder.open_decision('while', clean_label(m.group('cond')), clean_label(m.group('label')))
        elif _ENDWHILE_RE.match(text):
            m = _ENDWHILE_RE.match(text)
            builder.close(line.number, text, ('while',), clean_label(m.group('label')))
        elif _FORK_RE.match(text):
            builder.open_fork()
        elif _FORK_AGAIN_RE.match(text):
            builder.add_branch(ELSE_MARKER, line.number, text, ('fork',))
        elif _END_FORK_RE.match(text):
            builder.close(line.number, text, ('fork',))
        elif _SWIMLANE_RE.match(text):
            m = _SWIMLANE_RE.match(text)
            builder.switch_lane(m.group('label').strip(), m.group('color'))
        elif _PARTITION_RE.match(text):
            m = _PARTITION_RE.match(text)
            builder.open_partition(clean_label(m.group('quoted') or m.group('name')), m.group('color'))
        elif text == '}':
            builder.close_partition(line.number, text)
        elif _NOTE_RE.match(text):
            m = _NOTE_RE.match(text)
            if m.group('text') is not None:
                builder.attach_note(clean_label(m.group('text')))
            else:
                body, i = collect_block(lines, i, _END_NOTE_RE)
                builder.attach_note('\n'.join(body))
        elif not _DETACH_ARROW_RE.match(text):
            model.note_unmatched(line.number, text)
        i += 1

    builder.finish(lines[-1].number if lines else 0)

    for edge in build_flow_edges(model.nodes):
        model.add_edge(edge)


# ─── Edge builder ─────────────────────────────────────────────────

def build_flow_edges(nodes: Sequence[DiagramNode]) -> List[DiagramEdge]:
    """Pass 2: derive control-flow edges from the ordered node list."""
    by_name = {n.name: n for n in nodes}
    closers: Dict[str, DiagramNode] = {}
    markers: Dict[str, List[int]] = {}
    for index, node in enumerate(nodes):
        if node.related_decision is None:
            continue
        if node.is_marker:
            markers.setdefault(node.related_decision, []).append(index)
        else:
            closers[node.related_decision] = node
    loops = {n.name for n in nodes if n.node_type == ACTIVITY_DECISION and n.stereotype == 'while'}

    def entry(index: int) -> Optional[DiagramNode]:
        # node reached when control enters position index
        if index >= len(nodes):
            return None
        node = nodes[index]
        if node.is_marker:
            return closers.get(node.related_decision)
        return node

    def follow(index: int) -> Optional[DiagramNode]:
        target = entry(index)
        if target is not None and target.node_type == ACTIVITY_MERGE and target.related_decision in loops:
            return by_name[target.related_decision]
        return target

    edges: List[DiagramEdge] = []

    def link(source: DiagramNode, target: Optional[DiagramNode], label: str = "") -> None:
        if target is None or target.is_marker:
            return
        edges.append(DiagramEdge(source=source.name, target=target.name, rel_type='flow', label=label))

    for index, node in enumerate(nodes):
        if node.is_marker or node.node_type == ACTIVITY_END:
            continue

        if node.node_type == ACTIVITY_DECISION:
            closer = closers.get(node.name)
            branch_markers = [nodes[j] for j in markers.get(node.name, [])]
            first = entry(index + 1)
            if not (node.name in loops and first is closer):
                link(node, first, node.yes_branch)
            for j in markers.get(node.name, []):
                marker = nodes[j]
                link(node, entry(j + 1), marker.branch_label or marker.label)
            if node.name in loops:
                if closer is not None:
                    link(node, closer, closer.branch_label)
            elif first is not closer and not any(m.node_type == ELSE_MARKER for m in branch_markers):
                link(node, closer)
            continue

        if node.node_type == ACTIVITY_FORK and node.related_decision is None:
            link(node, entry(index + 1))
            for j in markers.get(node.name, []):
                link(node, entry(j + 1))
            continue

        link(node, follow(index + 1))

    return edges
