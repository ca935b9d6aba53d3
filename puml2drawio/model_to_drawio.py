#!/usr/bin/env python3
"""
Model to Draw.io Renderer

Writes a laid-out DiagramModel as a draw.io mxfile document:

  mxfile > diagram > mxGraphModel > root > mxCell*

Cells 0 and 1 are the fixed root/layer pair; every other cell id is an
integer assigned in emission order (groups, nodes with their member rows,
notes, then edges), starting at 2.

Also provides the draw.io diagram payload codec used for compressed
output: URI-encode, raw deflate, base64 (and the reverse).
"""

import argparse
import base64
import html
import sys
import urllib.parse
import xml.etree.ElementTree as ET
import zlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from puml2drawio.diagram_model import (
    ACTIVITY_DECISION, ACTIVITY_END, ACTIVITY_FORK, ACTIVITY_MERGE,
    ACTIVITY_START, DiagramEdge, DiagramModel, DiagramNode, load_model,
)
from puml2drawio.layout import (
    MARGIN, MEMBER_ROW, SEPARATOR, Box, Layout, class_header,
    compute_layout, drawable_edges, route_edge,
)

HOST = "puml2drawio"
AGENT = "puml2drawio"
VERSION = "21.6.5"
FIRST_CELL_ID = 2
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

# fill / stroke per class flavour
CLASS_COLORS = {
    'interface': ('#d5e8d4', '#82b366'),
    'abstract': ('#fff2cc', '#d6b656'),
    'enum': ('#e1d5e7', '#9673a6'),
    'annotation': ('#f8cecc', '#b85450'),
    'class': ('#dae8fc', '#6c8ebf'),
}

NOTE_STYLE = 'shape=note;whiteSpace=wrap;html=1;backgroundOutline=1;size=14;fillColor=#fff2cc;strokeColor=#d6b656;align=left;spacingLeft=6;'
MEMBER_STYLE = 'text;strokeColor=none;fillColor=none;align=left;verticalAlign=top;spacingLeft=4;spacingRight=4;overflow=hidden;rotatable=0;points=[[0,0.5],[1,0.5]];portConstraint=eastwest;html=1;'
LINE_STYLE = 'line;strokeWidth=1;fillColor=none;align=left;verticalAlign=middle;spacingTop=-1;spacingLeft=3;spacingRight=3;rotatable=0;labelPosition=right;points=[];portConstraint=eastwest;'

DEPLOYMENT_STYLES = {
    'node': 'shape=cube;whiteSpace=wrap;html=1;boundedLbl=1;backgroundOutline=1;darkOpacity=0.05;darkOpacity2=0.1;size=10;',
    'database': 'shape=cylinder3;whiteSpace=wrap;html=1;boundedLbl=1;backgroundOutline=1;size=10;',
    'cloud': 'ellipse;shape=cloud;whiteSpace=wrap;html=1;',
    'artifact': 'shape=note;whiteSpace=wrap;html=1;backgroundOutline=1;size=12;',
    'file': 'shape=note;whiteSpace=wrap;html=1;backgroundOutline=1;size=12;',
    'component': 'shape=component;align=left;spacingLeft=36;whiteSpace=wrap;html=1;',
    'folder': 'shape=folder;tabWidth=50;tabHeight=14;tabPosition=left;whiteSpace=wrap;html=1;',
    'package': 'shape=folder;tabWidth=50;tabHeight=14;tabPosition=left;whiteSpace=wrap;html=1;',
    'frame': 'shape=umlFrame;whiteSpace=wrap;html=1;',
    'queue': 'shape=cylinder3;direction=south;whiteSpace=wrap;html=1;boundedLbl=1;size=10;',
    'storage': 'shape=cylinder3;whiteSpace=wrap;html=1;boundedLbl=1;size=6;',
    'stack': 'shape=cube;whiteSpace=wrap;html=1;size=6;',
    'hexagon': 'shape=hexagon;perimeter=hexagonPerimeter2;whiteSpace=wrap;html=1;size=0.2;',
    'interface': 'ellipse;whiteSpace=wrap;html=1;aspect=fixed;labelPosition=center;verticalLabelPosition=bottom;',
    'boundary': 'shape=umlBoundary;whiteSpace=wrap;html=1;',
    'control': 'ellipse;shape=umlControl;whiteSpace=wrap;html=1;',
    'entity': 'ellipse;shape=umlEntity;whiteSpace=wrap;html=1;',
    'collections': 'shape=cube;whiteSpace=wrap;html=1;size=6;flipH=1;',
    'card': 'shape=card;whiteSpace=wrap;html=1;size=12;',
}
ACTOR_STYLE = 'shape=umlActor;verticalLabelPosition=bottom;verticalAlign=top;html=1;outlineConnect=0;'
RECTANGLE_STYLE = 'rounded=0;whiteSpace=wrap;html=1;'

EDGE_STYLES = {
    'extends': 'endArrow=block;endSize=16;endFill=0;html=1;rounded=0;',
    'implements': 'endArrow=block;endSize=16;endFill=0;html=1;rounded=0;dashed=1;',
    'composition': 'startArrow=diamondThin;startFill=1;startSize=24;endArrow=none;html=1;rounded=0;',
    'aggregation': 'startArrow=diamondThin;startFill=0;startSize=24;endArrow=none;html=1;rounded=0;',
    'association': 'endArrow=open;endSize=12;html=1;rounded=0;',
    'dependency': 'endArrow=open;endSize=12;html=1;rounded=0;dashed=1;',
    'transition': 'endArrow=open;endSize=12;html=1;rounded=1;',
    'message': 'html=1;verticalAlign=bottom;endArrow=block;endFill=1;rounded=0;',
    'containment': 'endArrow=none;html=1;rounded=0;dashed=1;',
    'include': 'endArrow=open;endSize=12;html=1;rounded=0;dashed=1;',
    'extend': 'endArrow=open;endSize=12;html=1;rounded=0;dashed=1;',
    'branch': 'endArrow=none;html=1;curved=1;strokeWidth=2;',
    'anchor': 'endArrow=none;html=1;dashed=1;',
    'flow': 'endArrow=classic;html=1;rounded=0;',
}

ER_MARKERS = {
    '1': 'ERmandOne',
    '0..1': 'ERzeroToOne',
    '0..*': 'ERzeroToMany',
    '1..*': 'ERoneToMany',
}

ACTIVITY_ROUTE_STYLES = {
    'straight': 'exitX=0.5;exitY=1;entryX=0.5;entryY=0;',
    'back': 'edgeStyle=orthogonalEdgeStyle;exitX=0;exitY=0.5;entryX=0;entryY=0.5;',
    'side': 'edgeStyle=orthogonalEdgeStyle;exitX=1;exitY=0.5;entryX=1;entryY=0.5;',
}


# ─── Payload codec ────────────────────────────────────────────────

def compress_diagram_data(xml_text: str) -> str:
    """Encode an mxGraphModel the way draw.io does: URI-encode, raw deflate, base64."""
    encoded = urllib.parse.quote(xml_text, safe="~()*!.'")
    compressor = zlib.compressobj(zlib.Z_BEST_COMPRESSION, zlib.DEFLATED, -15)
    data = compressor.compress(encoded.encode('utf-8')) + compressor.flush()
    return base64.b64encode(data).decode('ascii')


def decompress_diagram_data(data: str) -> str:
    """Decode a compressed draw.io diagram payload back to mxGraphModel XML."""
    data = data.strip()
    if data.startswith('<'):
        return data
    inflated = zlib.decompress(base64.b64decode(data), -15).decode('utf-8')
    return urllib.parse.unquote(inflated)


# ─── Labels ───────────────────────────────────────────────────────

def html_value(text: str) -> str:
    """Escape a label for an html=1 cell; newlines become <br>."""
    return '<br>'.join(html.escape(line, quote=False) for line in (text or '').split('\n'))


def _with_color(style: str, color: Optional[str]) -> str:
    if not color:
        return style
    return f"{style}fillColor={color};"


# ─── Writer ───────────────────────────────────────────────────────

class DrawioWriter:
    """Accumulates mxCell elements for one diagram page."""

    def __init__(self, model: DiagramModel, layout: Layout):
        self.model = model
        self.layout = layout
        self.root = ET.Element('root')
        ET.SubElement(self.root, 'mxCell', {'id': '0'})
        ET.SubElement(self.root, 'mxCell', {'id': '1', 'parent': '0'})
        self.next_id = FIRST_CELL_ID
        self.cell_ids: Dict[str, str] = {}

    def new_id(self) -> str:
        cell_id = str(self.next_id)
        self.next_id += 1
        return cell_id

    def vertex(self, value: str, style: str, box: Box, parent: str = '1',
               relative_to: Optional[Box] = None) -> str:
        cell_id = self.new_id()
        cell = ET.SubElement(self.root, 'mxCell', {
            'id': cell_id, 'value': value, 'style': style, 'vertex': '1', 'parent': parent,
        })
        x, y = box.x, box.y
        if relative_to is not None:
            x, y = x - relative_to.x, y - relative_to.y
        ET.SubElement(cell, 'mxGeometry', {
            'x': str(x), 'y': str(y), 'width': str(box.width), 'height': str(box.height),
            'as': 'geometry',
        })
        return cell_id

    def edge(self, value: str, style: str, source: str, target: str,
             points: Optional[List[Tuple[int, int]]] = None) -> str:
        cell_id = self.new_id()
        cell = ET.SubElement(self.root, 'mxCell', {
            'id': cell_id, 'value': value, 'style': style, 'edge': '1', 'parent': '1',
            'source': source, 'target': target,
        })
        geometry = ET.SubElement(cell, 'mxGeometry', {'relative': '1', 'as': 'geometry'})
        if points:
            array = ET.SubElement(geometry, 'Array', {'as': 'points'})
            for x, y in points:
                ET.SubElement(array, 'mxPoint', {'x': str(x), 'y': str(y)})
        return cell_id

    def edge_label(self, edge_id: str, value: str, position: int, align: str) -> None:
        cell = ET.SubElement(self.root, 'mxCell', {
            'id': self.new_id(), 'value': html_value(value),
            'style': f'edgeLabel;resizable=0;html=1;align={align};verticalAlign=bottom;',
            'vertex': '1', 'connectable': '0', 'parent': edge_id,
        })
        geometry = ET.SubElement(cell, 'mxGeometry', {'x': str(position), 'relative': '1', 'as': 'geometry'})
        ET.SubElement(geometry, 'mxPoint', {'as': 'offset'})

    # ── nodes ──────────────────────────────────────────────────

    def write_groups(self) -> None:
        for key, box in self.layout.groups.items():
            group_type, _, group_id = key.partition(':')
            groups = self.model.swimlanes if group_type == 'lane' else self.model.partitions
            group = next((g for g in groups if g.id == group_id), None)
            label = group.label if group else group_id
            color = group.color if group else None
            if group_type == 'lane':
                style = 'swimlane;html=1;startSize=30;horizontal=1;fillColor=none;'
            else:
                style = 'swimlane;html=1;startSize=20;dashed=1;rounded=1;fillColor=none;'
            if color:
                style += f'swimlaneFillColor={color};'
            self.vertex(html_value(label), style, box)

    def write_nodes(self) -> None:
        for node in self.model.nodes:
            box = self.layout.boxes.get(node.name)
            if box is None:
                continue
            self.cell_ids[node.name] = self.write_node(node, box)

    def write_node(self, node: DiagramNode, box: Box) -> str:
        kind = self.model.kind
        if node.node_type == 'note':
            return self.vertex(html_value(node.label), _with_color(NOTE_STYLE, node.color), box)
        if kind == 'class':
            return self._write_compartments(node, box, [m.display() for m in node.attributes],
                                            [m.display() for m in node.methods], node.attributes + node.methods)
        if kind == 'er':
            keys = [c.display() for c in node.columns if c.primary_key]
            rest = [c.display() for c in node.columns if not c.primary_key]
            return self._write_compartments(node, box, keys, rest, [])
        writer = getattr(self, f"_write_{kind}", None)
        if writer is None:
            return self.vertex(html_value(node.label), _with_color(RECTANGLE_STYLE, node.color), box)
        return writer(node, box)

    def _write_compartments(self, node: DiagramNode, box: Box, upper: List[str],
                            lower: List[str], members) -> str:
        fill, stroke = CLASS_COLORS.get(node.node_type, CLASS_COLORS['class'])
        if self.model.kind == 'er':
            fill, stroke = '#dae8fc', '#6c8ebf'
        header = class_header(node)
        style = (f'swimlane;fontStyle=1;align=center;verticalAlign=top;childLayout=stackLayout;'
                 f'horizontal=1;startSize={header};horizontalStack=0;resizeParent=1;'
                 f'resizeParentMax=0;resizeLast=0;collapsible=1;marginBottom=0;html=1;'
                 f'fillColor={node.color or fill};strokeColor={stroke};')
        title = node.label
        if node.stereotype:
            title = f"«{node.stereotype}»\n{node.label}"
        container = self.vertex(html_value(title), style, box)

        flags = {m.display(): m for m in members}
        y = box.y + header
        for text in upper:
            self._member_row(container, box, text, y, flags.get(text))
            y += MEMBER_ROW
        if upper and lower:
            self.vertex('', LINE_STYLE, Box(box.x, y, box.width, SEPARATOR), container, box)
            y += SEPARATOR
        for text in lower:
            self._member_row(container, box, text, y, flags.get(text))
            y += MEMBER_ROW
        return container

    def _member_row(self, container: str, box: Box, text: str, y: int, member) -> None:
        style = MEMBER_STYLE
        if member is not None and member.is_static:
            style += 'fontStyle=4;'
        elif member is not None and member.is_abstract:
            style += 'fontStyle=2;'
        self.vertex(html_value(text), style, Box(box.x, y, box.width, MEMBER_ROW), container, box)

    def _write_sequence(self, node: DiagramNode, box: Box) -> str:
        lifeline = Box(box.x, box.y, box.width, self.layout.height - MARGIN - box.y)
        if node.is_actor:
            style = (f'shape=umlLifeline;perimeter=lifelinePerimeter;participant=umlActor;'
                     f'whiteSpace=wrap;html=1;container=0;collapsible=0;verticalAlign=top;'
                     f'verticalLabelPosition=bottom;labelPosition=center;align=center;size={box.height};')
        else:
            style = (f'shape=umlLifeline;perimeter=lifelinePerimeter;whiteSpace=wrap;html=1;'
                     f'container=0;collapsible=0;recursiveResize=0;outlineConnect=0;size={box.height};')
        return self.vertex(html_value(node.label), _with_color(style, node.color), lifeline)

    def _write_state(self, node: DiagramNode, box: Box) -> str:
        t = node.node_type
        if t == 'initial':
            return self.vertex('', 'ellipse;html=1;shape=startState;fillColor=#000000;strokeColor=#000000;', box)
        if t == 'final':
            return self.vertex('', 'ellipse;html=1;shape=endState;fillColor=#000000;strokeColor=#000000;', box)
        if t == 'choice':
            return self.vertex('', 'rhombus;whiteSpace=wrap;html=1;', box)
        if t == 'fork':
            return self.vertex('', 'html=1;points=[];perimeter=orthogonalPerimeter;fillColor=#000000;strokeColor=none;', box)
        if t == 'history':
            return self.vertex(html_value(node.label), 'ellipse;whiteSpace=wrap;html=1;aspect=fixed;', box)
        text = '\n'.join([node.label] + node.description)
        style = 'rounded=1;whiteSpace=wrap;html=1;arcSize=40;fillColor=#dae8fc;strokeColor=#6c8ebf;'
        if node.color:
            style = style.replace('fillColor=#dae8fc;', f'fillColor={node.color};')
        return self.vertex(html_value(text), style, box)

    def _write_mindmap(self, node: DiagramNode, box: Box) -> str:
        if node.node_type == 'root':
            style = 'ellipse;whiteSpace=wrap;html=1;fontStyle=1;strokeColor=#b85450;'
            return self.vertex(html_value(node.label), style + f'fillColor={node.color or "#f8cecc"};', box)
        if node.node_type == 'boxless':
            return self.vertex(html_value(node.label), 'text;html=1;align=center;verticalAlign=middle;', box)
        style = 'rounded=1;whiteSpace=wrap;html=1;arcSize=30;strokeColor=#6c8ebf;'
        return self.vertex(html_value(node.label), style + f'fillColor={node.color or "#dae8fc"};', box)

    def _write_deployment(self, node: DiagramNode, box: Box) -> str:
        if node.is_actor or node.node_type == 'actor':
            return self.vertex(html_value(node.label), ACTOR_STYLE, box)
        style = DEPLOYMENT_STYLES.get(node.node_type, RECTANGLE_STYLE)
        label = node.label
        if node.stereotype:
            label = f"«{node.stereotype}»\n{label}"
        return self.vertex(html_value(label), _with_color(style, node.color), box)

    def _write_usecase(self, node: DiagramNode, box: Box) -> str:
        if node.is_actor or node.node_type == 'actor':
            return self.vertex(html_value(node.label), ACTOR_STYLE, box)
        if node.node_type == 'usecase':
            return self.vertex(html_value(node.label), _with_color('ellipse;whiteSpace=wrap;html=1;', node.color), box)
        return self._write_deployment(node, box)

    def _write_activity(self, node: DiagramNode, box: Box) -> str:
        t = node.node_type
        if t == ACTIVITY_START:
            cell = self.vertex('', 'ellipse;html=1;shape=startState;fillColor=#000000;strokeColor=#000000;', box)
        elif t == ACTIVITY_END:
            cell = self.vertex('', 'ellipse;html=1;shape=endState;fillColor=#000000;strokeColor=#000000;', box)
        elif t == ACTIVITY_DECISION:
            cell = self.vertex(html_value(node.label), 'rhombus;whiteSpace=wrap;html=1;fillColor=#fff2cc;strokeColor=#d6b656;', box)
        elif t == ACTIVITY_MERGE:
            cell = self.vertex('', 'rhombus;whiteSpace=wrap;html=1;fillColor=#fff2cc;strokeColor=#d6b656;', box)
        elif t == ACTIVITY_FORK:
            cell = self.vertex('', 'html=1;points=[];perimeter=orthogonalPerimeter;fillColor=#000000;strokeColor=none;', box)
        else:
            style = 'rounded=1;whiteSpace=wrap;html=1;arcSize=40;strokeColor=#6c8ebf;'
            cell = self.vertex(html_value(node.label), style + f'fillColor={node.color or "#dae8fc"};', box)
        return cell

    def write_annotations(self) -> None:
        for name, box in self.layout.annotations.items():
            node = self.model.get_node(name)
            note_id = self.vertex(html_value(node.note), NOTE_STYLE, box)
            self.edge('', EDGE_STYLES['anchor'], note_id, self.cell_ids[name])

    # ── edges ──────────────────────────────────────────────────

    def edge_style(self, edge: DiagramEdge) -> str:
        if edge.rel_type == 'relationship':
            start = ER_MARKERS.get(edge.source_cardinality, 'none')
            end = ER_MARKERS.get(edge.target_cardinality, 'none')
            style = (f'edgeStyle=entityRelationEdgeStyle;fontSize=12;html=1;endArrow={end};'
                     f'startArrow={start};endFill=0;startFill=0;rounded=0;')
        else:
            style = EDGE_STYLES.get(edge.rel_type, EDGE_STYLES['association'])
            if edge.rel_type == 'message' and edge.style == 'dashed':
                style = 'html=1;verticalAlign=bottom;endArrow=open;endSize=8;dashed=1;rounded=0;'
            elif not edge.arrow_end and 'endArrow=none' not in style and 'startArrow=diamond' not in style:
                style = style.replace('endArrow=open;endSize=12;', 'endArrow=none;')
                style = style.replace('endArrow=classic;', 'endArrow=none;')
                style = style.replace('endArrow=block;endFill=1;', 'endArrow=none;')
        if edge.style == 'dashed' and 'dashed=1' not in style:
            style += 'dashed=1;'
        if edge.arrow_start and 'startArrow=' not in style:
            style += 'startArrow=open;startSize=12;'
        return style

    def write_edges(self) -> None:
        for index, edge in drawable_edges(self.model, self.layout):
            route = route_edge(self.model, self.layout, index, edge)
            style = self.edge_style(edge)
            points = None
            if self.model.kind == 'activity':
                style += ACTIVITY_ROUTE_STYLES[route.kind]
            elif self.model.kind == 'sequence' and route.kind in ('message', 'loop'):
                lifeline_top = self.layout.boxes[edge.source].y
                span = max(1, self.layout.height - MARGIN - lifeline_top)
                exit_y = round((route.points[0][1] - lifeline_top) / span, 3)
                entry_y = round((route.points[-1][1] - lifeline_top) / span, 3)
                style += f'exitX=0.5;exitY={exit_y};entryX=0.5;entryY={entry_y};'
                if route.kind == 'loop':
                    points = route.points[1:-1]
            elif route.kind == 'loop':
                points = route.points[1:-1]
            edge_id = self.edge(html_value(edge.label), style,
                                self.cell_ids[edge.source], self.cell_ids[edge.target], points)
            if self.model.kind == 'class':
                if edge.source_cardinality:
                    self.edge_label(edge_id, edge.source_cardinality, -1, 'left')
                if edge.target_cardinality:
                    self.edge_label(edge_id, edge.target_cardinality, 1, 'right')

    def build(self) -> ET.Element:
        self.write_groups()
        self.write_nodes()
        self.write_annotations()
        self.write_edges()
        return self.root


# ─── Document ─────────────────────────────────────────────────────

def timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime('%Y-%m-%dT%H:%M:%S.') + f"{now.microsecond // 1000:03d}Z"


def model_to_drawio(model: DiagramModel, layout: Optional[Layout] = None,
                    compact: bool = False, compress: bool = False,
                    modified: Optional[str] = None) -> str:
    """Render a model as a draw.io document string."""
    layout = layout or compute_layout(model)
    cells = DrawioWriter(model, layout).build()

    graph = ET.Element('mxGraphModel', {
        'dx': '1200', 'dy': '800', 'grid': '1', 'gridSize': '10', 'guides': '1',
        'tooltips': '1', 'connect': '1', 'arrows': '1', 'fold': '1', 'page': '1',
        'pageScale': '1', 'pageWidth': str(max(850, layout.width)),
        'pageHeight': str(max(1100, layout.height)), 'math': '0', 'shadow': '0',
    })
    graph.append(cells)

    mxfile = ET.Element('mxfile', {
        'host': HOST, 'modified': modified or timestamp(), 'agent': AGENT, 'version': VERSION,
    })
    diagram = ET.SubElement(mxfile, 'diagram', {'name': model.title or 'Page-1', 'id': 'diagram-1'})

    if compress:
        diagram.text = compress_diagram_data(ET.tostring(graph, encoding='unicode'))
        compact = True
    else:
        diagram.append(graph)

    if not compact:
        ET.indent(mxfile, space='  ')
        return XML_DECLARATION + '\n' + ET.tostring(mxfile, encoding='unicode') + '\n'
    return XML_DECLARATION + ET.tostring(mxfile, encoding='unicode')


def main():
    parser = argparse.ArgumentParser(description="Render a .model.json file as draw.io XML")
    parser.add_argument("model", help="Path to .model.json")
    parser.add_argument("--output", "-o", help="Output .drawio file (default: stdout)")
    parser.add_argument("--compact", action="store_true", help="Single-line XML")
    parser.add_argument("--compress", action="store_true", help="Compress the diagram payload")
    args = parser.parse_args()

    model = load_model(args.model)
    xml_text = model_to_drawio(model, compact=args.compact, compress=args.compress)
    if args.output:
        Path(args.output).write_text(xml_text, encoding='utf-8')
        print(f"  Written: {args.output}", file=sys.stderr)
    else:
        print(xml_text)


if __name__ == "__main__":
    main()
