#!/usr/bin/env python3
"""
Layout Engine

Assigns integer coordinates to every drawable node of a frozen DiagramModel.
The result is an immutable Layout value computed once per conversion and
shared by the draw.io and SVG renderers, which also share node_size(),
drawable_edges() and route_edge() so both outputs agree on geometry.

Placement strategies:
- grid wrap:  class, er, state, deployment, usecase
- lanes:      sequence (participants in columns, one row per message/note)
- radial-ish: mindmap (root in the middle, levels as columns on each side)
- chain:      activity (vertical chain, swimlane columns, partition boxes)
"""

from collections import defaultdict
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, NamedTuple, Optional, Tuple

from puml2drawio.diagram_model import (
    ACTIVITY_ACTION, ACTIVITY_DECISION, ACTIVITY_END, ACTIVITY_FORK,
    ACTIVITY_MERGE, ACTIVITY_START, DiagramEdge, DiagramModel, DiagramNode,
)

MARGIN = 40
CHAR_WIDTH = 8

GRID_COLUMNS = 4
GRID_H_GAP = 60
GRID_V_GAP = 60

CLASS_HEADER = 26
STEREOTYPE_HEADER = 40
MEMBER_ROW = 20
SEPARATOR = 8

PARTICIPANT_HEIGHT = 50
SEQUENCE_LANE_MIN = 160
SEQUENCE_FIRST_ROW = 40
SEQUENCE_ROW = 40
SELF_LOOP_HEIGHT = 20

MINDMAP_LEVEL_DX = 200
MINDMAP_ROOT_GAP = 60
MINDMAP_V_GAP = 16
MINDMAP_TREE_GAP = 60

ACTIVITY_LANE_MIN = 220
LANE_HEADER = 30
NOTE_GAP = 30

# vertical advance after each activity node type
ACTIVITY_STEP = {
    ACTIVITY_START: 20,
    ACTIVITY_END: 30,
    ACTIVITY_ACTION: 40,
    ACTIVITY_DECISION: 30,
    ACTIVITY_MERGE: 20,
    ACTIVITY_FORK: 32,
}


@dataclass(frozen=True)
class Box:
    x: int
    y: int
    width: int
    height: int

    @property
    def cx(self) -> int:
        return self.x + self.width // 2

    @property
    def cy(self) -> int:
        return self.y + self.height // 2

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height


def _frozen_map() -> Mapping:
    return MappingProxyType({})


@dataclass(frozen=True)
class Layout:
    boxes: Mapping[str, Box]
    groups: Mapping[str, Box] = field(default_factory=_frozen_map)
    annotations: Mapping[str, Box] = field(default_factory=_frozen_map)
    rows: Tuple[int, ...] = ()
    width: int = 0
    height: int = 0


class EdgeRoute(NamedTuple):
    kind: str  # straight | back | side | message | loop
    points: List[Tuple[int, int]]


# ─── Size heuristics ──────────────────────────────────────────────

def text_width(text: str, char_width: int = CHAR_WIDTH, padding: int = 20) -> int:
    longest = max((len(line) for line in (text or '').split('\n')), default=0)
    return longest * char_width + padding


def line_count(text: str) -> int:
    return max(1, len((text or '').split('\n')))


def class_header(node: DiagramNode) -> int:
    return STEREOTYPE_HEADER if node.stereotype else CLASS_HEADER


def note_size(text: str) -> Tuple[int, int]:
    return max(120, text_width(text, 7, 30)), 20 + 16 * line_count(text)


def node_size(node: DiagramNode, kind: str) -> Tuple[int, int]:
    """Width and height of a node's box."""
    t = node.node_type
    if t == 'note':
        return note_size(node.label)

    if kind == 'class':
        members = node.attributes + node.methods
        widest = max((text_width(m.display(), 7, 20) for m in members), default=0)
        width = max(160, text_width(node.label, 9, 40), widest)
        rows = max(1, len(members))
        height = class_header(node) + MEMBER_ROW * rows
        if node.attributes and node.methods:
            height += SEPARATOR
        return width, height

    if kind == 'er':
        widest = max((text_width(c.display(), 7, 20) for c in node.columns), default=0)
        width = max(160, text_width(node.label, 9, 40), widest)
        height = class_header(node) + MEMBER_ROW * max(1, len(node.columns))
        if any(c.primary_key for c in node.columns) and any(not c.primary_key for c in node.columns):
            height += SEPARATOR
        return width, height

    if kind == 'sequence':
        return max(100, text_width(node.label)), PARTICIPANT_HEIGHT

    if kind == 'state':
        if t == 'initial':
            return 24, 24
        if t in ('final', 'history'):
            return 30, 30
        if t == 'choice':
            return 40, 40
        if t == 'fork':
            return 100, 10
        text = '\n'.join([node.label] + node.description)
        return max(120, text_width(text, 7, 30)), 40 + 16 * len(node.description)

    if kind == 'mindmap':
        width = max(80, text_width(node.label, 8, 24))
        height = 36 + 16 * (line_count(node.label) - 1)
        if t == 'root':
            height += 14
        return width, height

    if kind in ('deployment', 'usecase'):
        if node.is_actor or t == 'actor':
            return 40, 70
        if t == 'usecase':
            return max(120, text_width(node.label, 7, 40)), 60
        if t == 'cloud':
            return max(140, text_width(node.label, 8, 60)), 80
        if t == 'interface':
            return 30, 30
        return max(120, text_width(node.label, 8, 30)), 60 + 16 * (line_count(node.label) - 1)

    if kind == 'activity':
        if t in (ACTIVITY_START, ACTIVITY_END, ACTIVITY_MERGE):
            return 30, 30
        if t == ACTIVITY_DECISION:
            return max(100, text_width(node.label, 7, 40)), 60
        if t == ACTIVITY_FORK:
            return 120, 8
        return max(140, text_width(node.label)), 40 + 16 * (line_count(node.label) - 1)

    return 120, 60


# ─── Placement: grid ──────────────────────────────────────────────

def _finish(boxes: Dict[str, Box], groups: Optional[Dict[str, Box]] = None,
            annotations: Optional[Dict[str, Box]] = None, rows: Tuple[int, ...] = (),
            bottom: int = 0) -> Layout:
    every = list(boxes.values()) + list((groups or {}).values()) + list((annotations or {}).values())
    width = max([b.right for b in every], default=0) + MARGIN
    height = max([b.bottom for b in every] + [bottom], default=0) + MARGIN
    return Layout(
        boxes=MappingProxyType(dict(boxes)),
        groups=MappingProxyType(dict(groups or {})),
        annotations=MappingProxyType(dict(annotations or {})),
        rows=tuple(rows),
        width=max(width, 200),
        height=max(height, 120),
    )


def _place_grid(model: DiagramModel) -> Layout:
    boxes: Dict[str, Box] = {}
    x, y = MARGIN, MARGIN
    column = 0
    row_height = 0
    for node in model.nodes:
        width, height = node_size(node, model.kind)
        boxes[node.name] = Box(x, y, width, height)
        row_height = max(row_height, height)
        column += 1
        if column == GRID_COLUMNS:
            column = 0
            x = MARGIN
            y += row_height + GRID_V_GAP
            row_height = 0
        else:
            x += width + GRID_H_GAP
    return _finish(boxes)


# ─── Placement: sequence ──────────────────────────────────────────

def _place_sequence(model: DiagramModel) -> Layout:
    participants = [n for n in model.nodes if n.node_type != 'note']
    notes = [n for n in model.nodes if n.node_type == 'note']
    sizes = {n.name: node_size(n, model.kind) for n in participants}
    lane = max([SEQUENCE_LANE_MIN] + [w + 40 for w, _ in sizes.values()])

    boxes: Dict[str, Box] = {}
    for i, node in enumerate(participants):
        width, height = sizes[node.name]
        cx = MARGIN + i * lane + lane // 2
        boxes[node.name] = Box(cx - width // 2, MARGIN, width, height)

    events = [(e.sequence_order, 0, i) for i, e in enumerate(model.edges)]
    events += [(n.order, 1, i) for i, n in enumerate(notes)]
    events.sort()

    rows = [0] * len(model.edges)
    y = MARGIN + PARTICIPANT_HEIGHT + SEQUENCE_FIRST_ROW
    for _, is_note, index in events:
        if not is_note:
            edge = model.edges[index]
            rows[index] = y
            y += SEQUENCE_ROW + (SELF_LOOP_HEIGHT if edge.source == edge.target else 0)
            continue
        note = notes[index]
        width, height = note_size(note.label)
        anchor = boxes.get(note.parent) if note.parent else None
        anchor_x = anchor.cx if anchor else MARGIN + lane // 2
        if note.side == 'left':
            x = anchor_x - 20 - width
        elif note.side == 'right':
            x = anchor_x + 20
        else:
            x = anchor_x - width // 2
        boxes[note.name] = Box(max(x, 4), y - 10, width, height)
        y += height + 10

    return _finish(boxes, rows=tuple(rows), bottom=y)


# ─── Placement: mindmap ───────────────────────────────────────────

def _place_mindmap(model: DiagramModel) -> Layout:
    children: Dict[str, List[DiagramNode]] = defaultdict(list)
    roots: List[DiagramNode] = []
    for node in model.nodes:
        if node.parent is None:
            roots.append(node)
        else:
            children[node.parent].append(node)

    sizes = {n.name: node_size(n, model.kind) for n in model.nodes}
    widest = max([w for name, (w, _) in sizes.items() if model.get_node(name).parent], default=0)
    dx = max(MINDMAP_LEVEL_DX, widest + 40)

    boxes: Dict[str, Box] = {}
    top = MARGIN
    for root in roots:
        root_w, root_h = sizes[root.name]
        cursor = {'left': top, 'right': top}
        placed: List[Tuple[DiagramNode, int, int]] = []  # node, depth, y

        stack = [(child, 1) for child in reversed(children[root.name])]
        while stack:
            node, depth = stack.pop()
            side = 'left' if node.side == 'left' else 'right'
            placed.append((node, depth, cursor[side]))
            cursor[side] += sizes[node.name][1] + MINDMAP_V_GAP
            stack.extend((child, depth + 1) for child in reversed(children[node.name]))

        left_depth = max([d for n, d, _ in placed if n.side == 'left'], default=0)
        root_x = MARGIN + 20 + left_depth * dx
        span_bottom = max([top + root_h] + [c - MINDMAP_V_GAP for c in cursor.values() if c > top])
        root_y = top + (span_bottom - top - root_h) // 2
        boxes[root.name] = Box(root_x, root_y, root_w, root_h)

        for node, depth, y in placed:
            width, height = sizes[node.name]
            if node.side == 'left':
                x = root_x - MINDMAP_ROOT_GAP - (depth - 1) * dx - width
            else:
                x = root_x + root_w + MINDMAP_ROOT_GAP + (depth - 1) * dx
            boxes[node.name] = Box(x, y, width, height)

        top = max(span_bottom, root_y + root_h) + MINDMAP_TREE_GAP

    return _finish(boxes)


# ─── Placement: activity ──────────────────────────────────────────

def _place_activity(model: DiagramModel) -> Layout:
    placed = [n for n in model.nodes if not n.is_marker]
    sizes = {n.name: node_size(n, model.kind) for n in placed}
    lane_ids = [g.id for g in model.swimlanes]
    default_lane = lane_ids[0] if lane_ids else None

    def lane_of(node: DiagramNode) -> Optional[str]:
        return node.swimlane if node.swimlane in lane_ids else default_lane

    lane_width: Dict[Optional[str], int] = defaultdict(lambda: ACTIVITY_LANE_MIN)
    for node in placed:
        need = sizes[node.name][0] + 80
        if node.note:
            need += 2 * (note_size(node.note)[0] + NOTE_GAP)
        key = lane_of(node)
        lane_width[key] = max(lane_width[key], need)

    lane_left: Dict[Optional[str], int] = {}
    x = MARGIN
    for key in (lane_ids or [None]):
        lane_left[key] = x
        x += lane_width[key]

    boxes: Dict[str, Box] = {}
    annotations: Dict[str, Box] = {}
    y = MARGIN + (LANE_HEADER + 20 if lane_ids else 0)
    for node in placed:
        width, height = sizes[node.name]
        key = lane_of(node)
        cx = lane_left[key] + lane_width[key] // 2
        box = Box(cx - width // 2, y, width, height)
        boxes[node.name] = box
        if node.note:
            note_w, note_h = note_size(node.note)
            annotations[node.name] = Box(box.right + NOTE_GAP, box.cy - note_h // 2, note_w, note_h)
        y += height + ACTIVITY_STEP.get(node.node_type, 30)

    groups: Dict[str, Box] = {}
    for key in lane_ids:
        groups[f"lane:{key}"] = Box(lane_left[key], MARGIN, lane_width[key], y - MARGIN)

    for group in model.partitions:
        members = [boxes[n.name] for n in model.nodes[group.first_index:group.last_index + 1]
                   if n.name in boxes]
        if not members:
            continue
        left = min(b.x for b in members) - 20
        top = min(b.y for b in members) - 30
        right = max(b.right for b in members) + 20
        bottom = max(b.bottom for b in members) + 10
        groups[f"partition:{group.id}"] = Box(left, top, right - left, bottom - top)

    return _finish(boxes, groups, annotations, bottom=y)


_PLACERS = {
    'sequence': _place_sequence,
    'mindmap': _place_mindmap,
    'activity': _place_activity,
}


def compute_layout(model: DiagramModel) -> Layout:
    """Place every drawable node. Pure: the same model always yields the same Layout."""
    return _PLACERS.get(model.kind, _place_grid)(model)


# ─── Edges ────────────────────────────────────────────────────────

def drawable_edges(model: DiagramModel, layout: Layout) -> List[Tuple[int, DiagramEdge]]:
    """(index, edge) pairs whose endpoints are both placed."""
    return [(i, e) for i, e in enumerate(model.edges)
            if e.source in layout.boxes and e.target in layout.boxes]


def _clip(box: Box, tx: int, ty: int) -> Tuple[int, int]:
    """Point where the segment from box centre towards (tx, ty) leaves the box."""
    dx, dy = tx - box.cx, ty - box.cy
    if dx == 0 and dy == 0:
        return box.cx, box.cy
    scales = []
    if dx:
        scales.append((box.width // 2) / abs(dx))
    if dy:
        scales.append((box.height // 2) / abs(dy))
    scale = min(scales)
    return box.cx + round(dx * scale), box.cy + round(dy * scale)


def route_edge(model: DiagramModel, layout: Layout, index: int, edge: DiagramEdge) -> EdgeRoute:
    """Polyline for a drawable edge."""
    src = layout.boxes[edge.source]
    tgt = layout.boxes[edge.target]

    if model.kind == 'sequence' and edge.rel_type == 'message':
        y = layout.rows[index] if index < len(layout.rows) else src.bottom
        if edge.source == edge.target:
            return EdgeRoute('loop', [(src.cx, y), (src.cx + 40, y),
                                      (src.cx + 40, y + SELF_LOOP_HEIGHT), (src.cx, y + SELF_LOOP_HEIGHT)])
        return EdgeRoute('message', [(src.cx, y), (tgt.cx, y)])

    if model.kind == 'activity':
        if tgt.y < src.y:
            lx = min(src.x, tgt.x) - 30
            return EdgeRoute('back', [(src.x, src.cy), (lx, src.cy), (lx, tgt.cy), (tgt.x, tgt.cy)])
        between = [b for name, b in layout.boxes.items()
                   if src.bottom <= b.y and b.bottom <= tgt.y and name not in (edge.source, edge.target)]
        if not between:
            return EdgeRoute('straight', [(src.cx, src.bottom), (tgt.cx, tgt.y)])
        rx = max([src.right, tgt.right] + [b.right for b in between]) + 30
        return EdgeRoute('side', [(src.right, src.cy), (rx, src.cy), (rx, tgt.cy), (tgt.right, tgt.cy)])

    if edge.source == edge.target:
        return EdgeRoute('loop', [(src.right, src.cy - 10), (src.right + 30, src.cy - 10),
                                  (src.right + 30, src.cy + 10), (src.right, src.cy + 10)])
    start = _clip(src, tgt.cx, tgt.cy)
    end = _clip(tgt, src.cx, src.cy)
    return EdgeRoute('straight', [start, end])
