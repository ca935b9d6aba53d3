#!/usr/bin/env python3
"""
Model to SVG Preview Renderer

Draws a laid-out DiagramModel as a standalone SVG document using the same
Layout, node sizes and edge routes as the draw.io renderer. Each placed
node becomes one <g class="node"> of primitive shapes and each drawable
edge one <g class="edge">.
"""

import argparse
import sys
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List, Optional, Tuple

from puml2drawio.diagram_model import (
    ACTIVITY_DECISION, ACTIVITY_END, ACTIVITY_FORK, ACTIVITY_MERGE,
    ACTIVITY_START, DiagramEdge, DiagramModel, DiagramNode, load_model,
)
from puml2drawio.layout import (
    MARGIN, MEMBER_ROW, SEPARATOR, Box, Layout, class_header,
    compute_layout, drawable_edges, route_edge,
)

SVG_NS = "http://www.w3.org/2000/svg"
ET.register_namespace("", SVG_NS)

STYLE_SHEET = (
    ".label{font-family:Helvetica,Arial,sans-serif;font-size:12px;fill:#333333}"
    ".title{font-weight:bold}"
    ".edge-line{stroke:#555555;stroke-width:1.5;fill:none}"
    ".edge-label{font-family:Helvetica,Arial,sans-serif;font-size:11px;fill:#555555}"
)

FILL = '#dae8fc'
STROKE = '#6c8ebf'
CLASS_FILLS = {
    'interface': ('#d5e8d4', '#82b366'),
    'abstract': ('#fff2cc', '#d6b656'),
    'enum': ('#e1d5e7', '#9673a6'),
    'annotation': ('#f8cecc', '#b85450'),
}
NOTE_FILL = '#fff2cc'
NOTE_STROKE = '#d6b656'


def _q(tag: str) -> str:
    return f"{{{SVG_NS}}}{tag}"


def _el(parent: ET.Element, tag: str, **attrs) -> ET.Element:
    clean = {k.rstrip('_').replace('_', '-'): str(v) for k, v in attrs.items() if v is not None}
    return ET.SubElement(parent, _q(tag), clean)


def _text(parent: ET.Element, x: int, y: int, text: str, anchor: str = 'middle',
          css: str = 'label', bold: bool = False) -> None:
    lines = (text or '').split('\n')
    node = _el(parent, 'text', x=x, y=y, text_anchor=anchor,
               class_=f"{css} title" if bold else css)
    if len(lines) == 1:
        node.text = lines[0]
        return
    for i, line in enumerate(lines):
        span = _el(node, 'tspan', x=x, dy=0 if i == 0 else 16)
        span.text = line


def _centered_text(parent: ET.Element, box: Box, text: str, bold: bool = False) -> None:
    lines = (text or '').split('\n')
    first = box.cy - (len(lines) - 1) * 8 + 4
    _text(parent, box.cx, first, text, bold=bold)


def _points(points: List[Tuple[int, int]]) -> str:
    return ' '.join(f"{x},{y}" for x, y in points)


# ─── Shapes ───────────────────────────────────────────────────────

def _rect(g, box: Box, fill=FILL, stroke=STROKE, rx=0, dashed=False) -> None:
    _el(g, 'rect', x=box.x, y=box.y, width=box.width, height=box.height,
        rx=rx or None, fill=fill, stroke=stroke, stroke_dasharray='5,5' if dashed else None)


def _diamond(g, box: Box, fill='#fff2cc', stroke='#d6b656') -> None:
    _el(g, 'polygon', points=_points([(box.cx, box.y), (box.right, box.cy),
                                      (box.cx, box.bottom), (box.x, box.cy)]),
        fill=fill, stroke=stroke)


def _note(g, box: Box, text: str) -> None:
    fold = 12
    _el(g, 'polygon', points=_points([
        (box.x, box.y), (box.right - fold, box.y), (box.right, box.y + fold),
        (box.right, box.bottom), (box.x, box.bottom),
    ]), fill=NOTE_FILL, stroke=NOTE_STROKE)
    _text(g, box.x + 8, box.y + 18, text, anchor='start')


def _actor(g, box: Box, label: str) -> None:
    cx = box.cx
    _el(g, 'circle', cx=cx, cy=box.y + 8, r=8, fill='#ffffff', stroke='#333333')
    _el(g, 'line', x1=cx, y1=box.y + 16, x2=cx, y2=box.y + 36, stroke='#333333')
    _el(g, 'line', x1=cx - 14, y1=box.y + 22, x2=cx + 14, y2=box.y + 22, stroke='#333333')
    _el(g, 'line', x1=cx, y1=box.y + 36, x2=cx - 12, y2=box.y + 50, stroke='#333333')
    _el(g, 'line', x1=cx, y1=box.y + 36, x2=cx + 12, y2=box.y + 50, stroke='#333333')
    _text(g, cx, box.bottom + 4, label)


def _compartments(g, node: DiagramNode, box: Box, upper: List[str], lower: List[str],
                  fill: str, stroke: str) -> None:
    header = class_header(node)
    _rect(g, box, fill='#ffffff', stroke=stroke)
    _rect(g, Box(box.x, box.y, box.width, header), fill=fill, stroke=stroke)
    title = f"«{node.stereotype}»\n{node.label}" if node.stereotype else node.label
    _centered_text(g, Box(box.x, box.y, box.width, header), title, bold=True)
    y = box.y + header
    for text in upper:
        _text(g, box.x + 6, y + 14, text, anchor='start')
        y += MEMBER_ROW
    if upper and lower:
        _el(g, 'line', x1=box.x, y1=y + SEPARATOR // 2, x2=box.right, y2=y + SEPARATOR // 2, stroke=stroke)
        y += SEPARATOR
    for text in lower:
        _text(g, box.x + 6, y + 14, text, anchor='start')
        y += MEMBER_ROW


def _draw_class(g, node: DiagramNode, box: Box) -> None:
    fill, stroke = CLASS_FILLS.get(node.node_type, (FILL, STROKE))
    _compartments(g, node, box, [m.display() for m in node.attributes],
                  [m.display() for m in node.methods], node.color or fill, stroke)


def _draw_er(g, node: DiagramNode, box: Box) -> None:
    keys = [c.display() for c in node.columns if c.primary_key]
    rest = [c.display() for c in node.columns if not c.primary_key]
    _compartments(g, node, box, keys, rest, node.color or FILL, STROKE)


def _draw_sequence(g, node: DiagramNode, box: Box, layout: Layout) -> None:
    _el(g, 'line', x1=box.cx, y1=box.bottom, x2=box.cx, y2=layout.height - MARGIN,
        stroke='#999999', stroke_dasharray='5,5')
    if node.is_actor:
        _actor(g, Box(box.cx - 20, box.y, 40, box.height - 14), node.label)
        return
    _rect(g, box, fill=node.color or FILL)
    _centered_text(g, box, node.label)


def _draw_state(g, node: DiagramNode, box: Box) -> None:
    t = node.node_type
    r = min(box.width, box.height) // 2
    if t == 'initial':
        _el(g, 'circle', cx=box.cx, cy=box.cy, r=r, fill='#000000')
    elif t == 'final':
        _el(g, 'circle', cx=box.cx, cy=box.cy, r=r, fill='#ffffff', stroke='#000000')
        _el(g, 'circle', cx=box.cx, cy=box.cy, r=r - 6, fill='#000000')
    elif t == 'choice':
        _diamond(g, box, fill='#ffffff', stroke='#000000')
    elif t == 'fork':
        _rect(g, box, fill='#000000', stroke='#000000')
    elif t == 'history':
        _el(g, 'circle', cx=box.cx, cy=box.cy, r=r, fill='#ffffff', stroke='#000000')
        _centered_text(g, box, node.label)
    else:
        _rect(g, box, fill=node.color or FILL, rx=12)
        _centered_text(g, box, '\n'.join([node.label] + node.description))


def _draw_mindmap(g, node: DiagramNode, box: Box) -> None:
    if node.node_type == 'root':
        _el(g, 'ellipse', cx=box.cx, cy=box.cy, rx=box.width // 2, ry=box.height // 2,
            fill=node.color or '#f8cecc', stroke='#b85450')
        _centered_text(g, box, node.label, bold=True)
    elif node.node_type == 'boxless':
        _centered_text(g, box, node.label)
        _el(g, 'line', x1=box.x, y1=box.bottom, x2=box.right, y2=box.bottom, stroke=STROKE)
    else:
        _rect(g, box, fill=node.color or FILL, rx=8)
        _centered_text(g, box, node.label)


def _draw_deployment(g, node: DiagramNode, box: Box) -> None:
    t = node.node_type
    fill = node.color or FILL
    label = f"«{node.stereotype}»\n{node.label}" if node.stereotype else node.label
    if node.is_actor or t == 'actor':
        _actor(g, Box(box.x, box.y, box.width, box.height - 14), node.label)
        return
    if t in ('database', 'storage', 'queue'):
        rx, ry = box.width // 2, 8
        _el(g, 'path', d=(f"M{box.x},{box.y + ry} a{rx},{ry} 0 0,0 {box.width},0 "
                          f"a{rx},{ry} 0 0,0 {-box.width},0 v{box.height - 2 * ry} "
                          f"a{rx},{ry} 0 0,0 {box.width},0 v{-(box.height - 2 * ry)}"),
            fill=fill, stroke=STROKE)
    elif t == 'cloud':
        _el(g, 'ellipse', cx=box.cx, cy=box.cy, rx=box.width // 2, ry=box.height // 2,
            fill=fill, stroke=STROKE)
    elif t in ('node', 'stack'):
        depth = 10
        _el(g, 'polygon', points=_points([
            (box.x, box.y + depth), (box.x + depth, box.y), (box.right, box.y),
            (box.right, box.bottom - depth), (box.right - depth, box.bottom),
        ]), fill=fill, stroke=STROKE)
        _rect(g, Box(box.x, box.y + depth, box.width - depth, box.height - depth), fill=fill)
    elif t in ('folder', 'package'):
        _el(g, 'polygon', points=_points([
            (box.x, box.y), (box.x + 50, box.y), (box.x + 56, box.y + 12), (box.right, box.y + 12),
            (box.right, box.bottom), (box.x, box.bottom),
        ]), fill=fill, stroke=STROKE)
    elif t in ('artifact', 'file'):
        _note(g, box, '')
    elif t == 'interface':
        _el(g, 'circle', cx=box.cx, cy=box.cy, r=box.width // 2, fill=fill, stroke=STROKE)
        _text(g, box.cx, box.bottom + 14, label)
        return
    elif t == 'usecase':
        _el(g, 'ellipse', cx=box.cx, cy=box.cy, rx=box.width // 2, ry=box.height // 2,
            fill=fill, stroke=STROKE)
    elif t == 'component':
        _rect(g, box, fill=fill)
        _rect(g, Box(box.x - 6, box.y + 12, 12, 8), fill='#ffffff')
        _rect(g, Box(box.x - 6, box.y + 28, 12, 8), fill='#ffffff')
    else:
        _rect(g, box, fill=fill)
    _centered_text(g, box, label)


def _draw_activity(g, node: DiagramNode, box: Box) -> None:
    t = node.node_type
    r = box.width // 2
    if t == ACTIVITY_START:
        _el(g, 'circle', cx=box.cx, cy=box.cy, r=r, fill='#000000')
    elif t == ACTIVITY_END:
        _el(g, 'circle', cx=box.cx, cy=box.cy, r=r, fill='#ffffff', stroke='#000000')
        _el(g, 'circle', cx=box.cx, cy=box.cy, r=r - 6, fill='#000000')
    elif t == ACTIVITY_DECISION:
        _diamond(g, box)
        _centered_text(g, box, node.label)
    elif t == ACTIVITY_MERGE:
        _diamond(g, box)
    elif t == ACTIVITY_FORK:
        _rect(g, box, fill='#000000', stroke='#000000')
    else:
        _rect(g, box, fill=node.color or FILL, rx=10)
        _centered_text(g, box, node.label)


# ─── Edges ────────────────────────────────────────────────────────

def _label_anchor(points: List[Tuple[int, int]]) -> Tuple[int, int]:
    mid = len(points) // 2
    (x1, y1), (x2, y2) = points[mid - 1], points[mid]
    return (x1 + x2) // 2, (y1 + y2) // 2


def _draw_edge(svg: ET.Element, model: DiagramModel, layout: Layout, index: int, edge: DiagramEdge) -> None:
    route = route_edge(model, layout, index, edge)
    g = _el(svg, 'g', class_='edge', data_source=edge.source, data_target=edge.target)
    markers = {}
    if edge.arrow_end and edge.rel_type not in ('composition', 'aggregation', 'relationship'):
        markers['marker_end'] = 'url(#hollow)' if edge.rel_type in ('extends', 'implements') else 'url(#arrow)'
    if edge.rel_type == 'composition':
        markers['marker_start'] = 'url(#diamond)'
    elif edge.rel_type == 'aggregation':
        markers['marker_start'] = 'url(#diamond-open)'
    elif edge.arrow_start:
        markers['marker_start'] = 'url(#arrow-start)'
    dashed = edge.style == 'dashed' or edge.rel_type in ('implements', 'dependency', 'include', 'extend', 'anchor')
    _el(g, 'polyline', points=_points(route.points), class_='edge-line',
        stroke_dasharray='5,5' if dashed else None, **markers)

    if edge.label:
        x, y = _label_anchor(route.points)
        _text(g, x, y - 4, edge.label, css='edge-label')
    if edge.source_cardinality:
        x, y = route.points[0]
        _text(g, x + 6, y - 6, edge.source_cardinality, anchor='start', css='edge-label')
    if edge.target_cardinality:
        x, y = route.points[-1]
        _text(g, x + 6, y - 6, edge.target_cardinality, anchor='start', css='edge-label')


def _defs(svg: ET.Element) -> None:
    defs = _el(svg, 'defs')
    style = _el(defs, 'style')
    style.text = STYLE_SHEET
    arrow = _el(defs, 'marker', id='arrow', markerWidth=10, markerHeight=10, refX=9, refY=3,
                orient='auto', markerUnits='strokeWidth')
    _el(arrow, 'path', d='M0,0 L0,6 L9,3 z', fill='#555555')
    start = _el(defs, 'marker', id='arrow-start', markerWidth=10, markerHeight=10, refX=0, refY=3,
                orient='auto', markerUnits='strokeWidth')
    _el(start, 'path', d='M9,0 L9,6 L0,3 z', fill='#555555')
    hollow = _el(defs, 'marker', id='hollow', markerWidth=12, markerHeight=12, refX=11, refY=5,
                 orient='auto', markerUnits='strokeWidth')
    _el(hollow, 'path', d='M0,0 L0,10 L11,5 z', fill='#ffffff', stroke='#555555')
    for marker_id, fill in (('diamond', '#555555'), ('diamond-open', '#ffffff')):
        diamond = _el(defs, 'marker', id=marker_id, markerWidth=14, markerHeight=10, refX=0, refY=4,
                      orient='auto', markerUnits='strokeWidth')
        _el(diamond, 'path', d='M0,4 L6,0 L12,4 L6,8 z', fill=fill, stroke='#555555')


# ─── Document ─────────────────────────────────────────────────────

def build_svg(model: DiagramModel, layout: Layout) -> ET.Element:
    svg = ET.Element(_q('svg'), {
        'width': str(layout.width), 'height': str(layout.height),
        'viewBox': f"0 0 {layout.width} {layout.height}",
    })
    title = _el(svg, 'title')
    title.text = model.title or f"{model.kind} diagram"
    _defs(svg)
    _el(svg, 'rect', x=0, y=0, width=layout.width, height=layout.height, fill='#ffffff')

    for key, box in layout.groups.items():
        group_type, _, group_id = key.partition(':')
        groups = model.swimlanes if group_type == 'lane' else model.partitions
        group = next((grp for grp in groups if grp.id == group_id), None)
        label = group.label if group else group_id
        g = _el(svg, 'g', class_='group')
        if group_type == 'lane':
            _rect(g, box, fill='none', stroke='#999999')
            _el(g, 'line', x1=box.x, y1=box.y + 30, x2=box.right, y2=box.y + 30, stroke='#999999')
            _text(g, box.cx, box.y + 20, label, bold=True)
        else:
            _rect(g, box, fill='none', stroke='#999999', rx=6, dashed=True)
            _text(g, box.x + 8, box.y + 15, label, anchor='start', bold=True)

    drawers = {
        'class': _draw_class, 'er': _draw_er, 'state': _draw_state,
        'mindmap': _draw_mindmap, 'deployment': _draw_deployment,
        'usecase': _draw_deployment, 'activity': _draw_activity,
    }
    for node in model.nodes:
        box = layout.boxes.get(node.name)
        if box is None:
            continue
        g = _el(svg, 'g', class_='node', data_name=node.name)
        if node.node_type == 'note':
            _note(g, box, node.label)
        elif model.kind == 'sequence':
            _draw_sequence(g, node, box, layout)
        else:
            drawers.get(model.kind, _draw_deployment)(g, node, box)

    for name, box in layout.annotations.items():
        node = model.get_node(name)
        anchor = layout.boxes[name]
        g = _el(svg, 'g', class_='annotation', data_name=name)
        _el(g, 'line', x1=anchor.right, y1=anchor.cy, x2=box.x, y2=box.cy,
            stroke=NOTE_STROKE, stroke_dasharray='4,4')
        _note(g, box, node.note)

    for index, edge in drawable_edges(model, layout):
        _draw_edge(svg, model, layout, index, edge)

    return svg


def model_to_svg(model: DiagramModel, layout: Optional[Layout] = None) -> str:
    """Render a model as an SVG document string."""
    layout = layout or compute_layout(model)
    return ET.tostring(build_svg(model, layout), encoding='unicode')


def main():
    parser = argparse.ArgumentParser(description="Render a .model.json file as an SVG preview")
    parser.add_argument("model", help="Path to .model.json")
    parser.add_argument("--output", "-o", help="Output .svg file (default: stdout)")
    args = parser.parse_args()

    svg_text = model_to_svg(load_model(args.model))
    if args.output:
        Path(args.output).write_text(svg_text, encoding='utf-8')
        print(f"  Written: {args.output}", file=sys.stderr)
    else:
        print(svg_text)


if __name__ == "__main__":
    main()
