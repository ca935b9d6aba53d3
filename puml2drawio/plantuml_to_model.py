#!/usr/bin/env python3
"""
PlantUML to Model Parser

Parses PlantUML source into a typed DiagramModel with:
- Source preprocessing (comments, block comments, directives, title)
- Ordered, heuristic diagram type detection
- Class diagram support (classes, interfaces, enums, members, relations, multiplicities)
- Sequence diagram support (participants, messages, returns, notes)
- State diagram support (states, pseudo-states, composites, transitions)
- Mind map support (OrgMode bullets, sides, multi-line topics)
- Entity-relationship support (entities, keys, crow's-foot cardinalities)
- Deployment/component support (archetypes, containers, shorthands)
- Use case support (actors, use cases, include/extend, generalization)

Activity diagrams are handled by activity_flow.py.

Unrecognized lines never fail a conversion: they are recorded in
model.diagnostics and skipped.
"""

import argparse
import json
import re
import sys
from pathlib import Path
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from puml2drawio.diagram_model import (
    DiagramEdge, DiagramModel, DiagramNode, EntityAttribute, Member, to_json,
)


# ─── Named color mapping ───────────────────────────────────────────

NAMED_COLORS = {
    'red': '#FF0000', 'blue': '#0000FF', 'green': '#008000',
    'orange': '#FFA500', 'yellow': '#FFFF00', 'purple': '#800080',
    'pink': '#FFC0CB', 'black': '#000000', 'white': '#FFFFFF',
    'gray': '#808080', 'grey': '#808080',
    'lightblue': '#ADD8E6', 'darkblue': '#00008B',
    'lightgreen': '#90EE90', 'darkgreen': '#006400',
    'lightgray': '#D3D3D3', 'lightgrey': '#D3D3D3',
    'darkgray': '#A9A9A9', 'darkgrey': '#A9A9A9',
    'lightyellow': '#FFFFE0', 'antiquewhite': '#FAEBD7',
    'cyan': '#00FFFF', 'magenta': '#FF00FF',
    'brown': '#A52A2A', 'navy': '#000080',
    'teal': '#008080', 'maroon': '#800000',
    'olive': '#808000', 'aqua': '#00FFFF',
    'coral': '#FF7F50', 'salmon': '#FA8072',
    'gold': '#FFD700', 'silver': '#C0C0C0',
    'skyblue': '#87CEEB', 'tomato': '#FF6347',
    'wheat': '#F5DEB3', 'beige': '#F5F5DC',
    'ivory': '#FFFFF0', 'linen': '#FAF0E6',
    'crimson': '#DC143C', 'indigo': '#4B0082',
}


def resolve_color(color_str: Optional[str]) -> Optional[str]:
    """Resolve a PlantUML color to hex. Handles #hex, #NamedColor, and bare names."""
    if not color_str:
        return None
    color_str = color_str.strip().lstrip('#')
    if re.match(r'^[0-9a-fA-F]{3}$|^[0-9a-fA-F]{6}$', color_str):
        return f'#{color_str.upper()}'
    return NAMED_COLORS.get(color_str.lower())


def clean_label(text: Optional[str]) -> str:
    """Normalize a PlantUML label: unquote and expand literal \\n."""
    if not text:
        return ""
    text = text.strip()
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        text = text[1:-1]
    return text.replace('\\n', '\n').strip()


# ─── Preprocessing ─────────────────────────────────────────────────

class SourceLine(NamedTuple):
    number: int
    text: str


_MARKER_RE = re.compile(r'^@(?:start|end)\w*', re.IGNORECASE)
_DIRECTIVE_RE = re.compile(
    r'^(?:skinparam\b|hide\b|show\b|scale\b|caption\b|header\b|footer\b|!|'
    r'allowmixing\b|set\s+namespaceseparator\b|'
    r'left\s+to\s+right\s+direction|top\s+to\s+bottom\s+direction)',
    re.IGNORECASE,
)
_SKINPARAM_BLOCK_RE = re.compile(r'^skinparam\b.*\{\s*$', re.IGNORECASE)
_LEGEND_RE = re.compile(r'^legend\b', re.IGNORECASE)
_TITLE_RE = re.compile(r'^title\s+(.+)$', re.IGNORECASE)


def preprocess(text: str) -> Tuple[List[SourceLine], str]:
    """Filter raw source into trimmed element lines. Returns (lines, title)."""
    lines: List[SourceLine] = []
    title = ""
    in_comment = False
    skip_until: Optional[str] = None

    for number, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if in_comment:
            if "'/" in line:
                in_comment = False
            continue
        if line.startswith("/'"):
            if "'/" not in line[2:]:
                in_comment = True
            continue
        if skip_until:
            if re.match(skip_until, line, re.IGNORECASE):
                skip_until = None
            continue
        if not line or line.startswith("'") or _MARKER_RE.match(line):
            continue
        if _SKINPARAM_BLOCK_RE.match(line):
            skip_until = r'^\}'
            continue
        if _LEGEND_RE.match(line):
            skip_until = r'^end\s*legend'
            continue
        if _DIRECTIVE_RE.match(line):
            continue
        m = _TITLE_RE.match(line)
        if m:
            title = clean_label(m.group(1))
            continue
        lines.append(SourceLine(number, line))

    return lines, title


# ─── Diagram type detection ───────────────────────────────────────

_MINDMAP_MARKER_RE = re.compile(r'^\s*@startmindmap\b', re.IGNORECASE | re.MULTILINE)
_STAR_BULLET_RE = re.compile(r'^\*+_?\s*\S')
_START_STOP_RE = re.compile(r'^(?:start|stop|end|kill|detach)$', re.IGNORECASE)
_ACTION_LINE_RE = re.compile(r'^(?:#\w+)?:.*[;|<>/\]}]$')
_CONTROL_RE = re.compile(r'^(?:if|while|elseif)\s*\(', re.IGNORECASE)
_FORK_LINE_RE = re.compile(r'^fork$', re.IGNORECASE)
_SEQ_DECL_RE = re.compile(r'^(?:participant|boundary|control|collections)\s+\S', re.IGNORECASE)
_MESSAGE_LINE_RE = re.compile(
    r'^(?:"[^"]+"|[\w.]+)\s*(?:<?-{1,2}>{1,2}|<{1,2}-{1,2})[xo]?(?:\+\+|--)?\s*(?:"[^"]+"|[\w.]+)\s*:'
)
_STRUCTURE_RE = re.compile(
    r'^(?:abstract\s+class|abstract|class|interface|enum|annotation|state|usecase|'
    r'node|cloud|artifact|folder|frame|package|component|storage|rectangle)\s+\S'
    r'|^entity\s+.*\{\s*$|^\(.+\)|^\[[^\]*]+\]|\[\*\]',
    re.IGNORECASE,
)
_STATE_KW_RE = re.compile(r'^state\s+\S', re.IGNORECASE)
_TRANSITION_ARROW_RE = re.compile(r'-+(?:\[[^\]]*\]-*)?(?:(?:up|down|left|right|u|d|l|r)-+)?>')
_ENTITY_KW_RE = re.compile(r'^entity\s+\S', re.IGNORECASE)
_CROWS_FOOT_RE = re.compile(r'(?:\|o|\|\||\}o|\}\|)\s*(?:-+|\.+)\s*(?:o\||\|\||o\{|\|\{)')
_CLASS_KW_RE = re.compile(r'^(?:abstract\s+class|abstract|class|interface|enum|annotation)\s+\S', re.IGNORECASE)
_ARCHETYPE_KW_RE = re.compile(
    r'^(?:node|database|cloud|artifact|component|folder|frame|package|storage|queue|card|file|stack|agent|hexagon)\s+\S'
    r'|^\[[^\]*]+\]',
    re.IGNORECASE,
)
_USECASE_KW_RE = re.compile(r'^(?:actor|usecase)/?\s+\S|^\(.+\)|^:[^:;]+:|[-.]>?\s*\([^)]+\)', re.IGNORECASE)


def _any(lines: List[str], pattern: 're.Pattern') -> bool:
    return any(pattern.search(line) for line in lines)


def _looks_like_mindmap(content: str, lines: List[str]) -> bool:
    if _MINDMAP_MARKER_RE.search(content):
        return True
    return bool(lines) and all(_STAR_BULLET_RE.match(line) for line in lines)


def _looks_like_activity(content: str, lines: List[str]) -> bool:
    has_terminal = _any(lines, _START_STOP_RE)
    has_action = _any(lines, _ACTION_LINE_RE)
    has_control = _any(lines, _CONTROL_RE)
    if has_terminal and (has_action or has_control):
        return True
    return has_action and (has_control or _any(lines, _FORK_LINE_RE))


def _looks_like_sequence(content: str, lines: List[str]) -> bool:
    if _any(lines, _SEQ_DECL_RE):
        return True
    return _any(lines, _MESSAGE_LINE_RE) and not _any(lines, _STRUCTURE_RE)


def _looks_like_state(content: str, lines: List[str]) -> bool:
    if any('[*]' in line for line in lines):
        return True
    return _any(lines, _STATE_KW_RE) and _any(lines, _TRANSITION_ARROW_RE)


def _looks_like_er(content: str, lines: List[str]) -> bool:
    return _any(lines, _ENTITY_KW_RE) or _any(lines, _CROWS_FOOT_RE)


def _looks_like_class(content: str, lines: List[str]) -> bool:
    return _any(lines, _CLASS_KW_RE)


def _looks_like_deployment(content: str, lines: List[str]) -> bool:
    return _any(lines, _ARCHETYPE_KW_RE)


def _looks_like_usecase(content: str, lines: List[str]) -> bool:
    return _any(lines, _USECASE_KW_RE)


# Evaluated top to bottom; the first matching rule wins.
DETECTION_RULES: List[Tuple[str, Callable[[str, List[str]], bool]]] = [
    ('mindmap', _looks_like_mindmap),
    ('activity', _looks_like_activity),
    ('sequence', _looks_like_sequence),
    ('state', _looks_like_state),
    ('er', _looks_like_er),
    ('class', _looks_like_class),
    ('deployment', _looks_like_deployment),
    ('usecase', _looks_like_usecase),
]


def detect_diagram_type(content: str) -> str:
    """Detect the PlantUML diagram kind from content. Always returns a kind."""
    lines = [line.text for line in preprocess(content)[0]]
    for kind, predicate in DETECTION_RULES:
        if predicate(content, lines):
            return kind
    return 'class'


# ─── Shared grammar pieces ────────────────────────────────────────

# Declaration identity: "Label" as Alias | Name as "Label" | Label as Alias | "Name" | Name
_DECL_NAME = (
    r'(?:"(?P<qlabel>[^"]+)"\s+as\s+(?P<alias>[\w.$]+)'
    r'|(?P<name>[\w.$]+)\s+as\s+"(?P<rlabel>[^"]+)"'
    r'|(?P<dname>[\w.$]+)\s+as\s+(?P<dalias>[\w.$]+)'
    r'|"(?P<qname>[^"]+)"'
    r'|(?P<plain>[\w.$]+))'
)
_STEREO = r'(?:<<\s*(?P<stereo>[^>]+?)\s*>>)?'
_COLOR = r'(?P<color>#\w+)?'

_LINK_ARROW = (
    r'(?:<\||<)?[-.=]+(?:\[[^\]]*\][-.=]*)?'
    r'(?:(?:up|down|left|right|u|d|l|r)[-.=]+)?(?:\|>|>)?'
)
_SEPARATOR_RE = re.compile(r'^(?:-{2,}|\.{2,}|={2,}|_{2,})(?:.*?(?:-{2,}|\.{2,}|={2,}|_{2,}))?$')
_END_NOTE_RE = re.compile(r'^end\s*note$', re.IGNORECASE)


def _decl_identity(m: 're.Match') -> Tuple[str, str]:
    """Return (name, label) from a match of _DECL_NAME."""
    if m.group('qlabel'):
        return m.group('alias'), clean_label(m.group('qlabel'))
    if m.group('name'):
        return m.group('name'), clean_label(m.group('rlabel'))
    if m.group('dname'):
        return m.group('dalias'), clean_label(m.group('dname'))
    if m.group('qname'):
        label = clean_label(m.group('qname'))
        return label, label
    plain = m.group('plain')
    return plain, plain


def strip_arrow_decorations(arrow: str) -> str:
    """Remove [#color]/[hidden] blocks and direction hints from an arrow."""
    arrow = re.sub(r'\[[^\]]*\]', '', arrow.strip())
    return re.sub(r'(?<=[-.=])(?:up|down|left|right|u|d|l|r)(?=[-.=])', '', arrow)


def collect_block(lines: List[SourceLine], start: int, end_re: 're.Pattern') -> Tuple[List[str], int]:
    """Scan forward from lines[start] to the closing line. Returns (body, closing index)."""
    body: List[str] = []
    i = start + 1
    while i < len(lines) and not end_re.match(lines[i].text):
        body.append(lines[i].text)
        i += 1
    return body, min(i, len(lines) - 1)


def _resolve_ref(model: DiagramModel, ref: str, **defaults) -> str:
    """Resolve a relation endpoint to a node name, declaring it if unknown."""
    name = clean_label(ref)
    node = model.get_node(name) or model.find_by_label(name)
    if node is not None:
        return node.name
    return model.ensure_node(name, **defaults).name


# ─── Notes (class, state, er, deployment, usecase) ────────────────

_NOTE_INLINE_RE = re.compile(r'^note\s+"(?P<text>[^"]+)"\s+as\s+(?P<alias>[\w.$]+)\s*' + _COLOR + r'\s*$', re.IGNORECASE)
_NOTE_ALIAS_BLOCK_RE = re.compile(r'^note\s+as\s+(?P<alias>[\w.$]+)\s*' + _COLOR + r'\s*$', re.IGNORECASE)
_NOTE_ON_RE = re.compile(
    r'^note\s+(?P<pos>left|right|top|bottom)(?:\s+of)?\s+'
    r'(?P<target>"[^"]+"|\([^)]+\)|\[[^\]]+\]|:[^:]+:|[\w.$]+)\s*' + _COLOR +
    r'\s*(?::\s*(?P<text>.*))?$',
    re.IGNORECASE,
)


def _next_note_name(model: DiagramModel) -> str:
    count = sum(1 for n in model.nodes if n.node_type == 'note')
    name = f"note_{count + 1}"
    while model.get_node(name) is not None:
        count += 1
        name = f"note_{count + 1}"
    return name


def _strip_ref_brackets(ref: str) -> str:
    ref = ref.strip()
    if len(ref) >= 2 and ref[0] + ref[-1] in ('()', '[]', '::'):
        return ref[1:-1].strip()
    return ref


def parse_note(lines: List[SourceLine], i: int, model: DiagramModel) -> Optional[int]:
    """Consume a note construct at lines[i]. Returns the last consumed index, or None."""
    text = lines[i].text
    if not text.lower().startswith('note'):
        return None

    m = _NOTE_INLINE_RE.match(text)
    if m:
        model.add_node(DiagramNode(
            name=m.group('alias'), label=clean_label(m.group('text')), node_type='note',
            color=resolve_color(m.group('color')),
        ))
        return i

    m = _NOTE_ALIAS_BLOCK_RE.match(text)
    if m:
        body, end = collect_block(lines, i, _END_NOTE_RE)
        model.add_node(DiagramNode(
            name=m.group('alias'), label='\n'.join(body), node_type='note',
            color=resolve_color(m.group('color')),
        ))
        return end

    m = _NOTE_ON_RE.match(text)
    if m:
        if m.group('text') is not None:
            body, end = [m.group('text')], i
        else:
            body, end = collect_block(lines, i, _END_NOTE_RE)
        target = _resolve_ref(model, _strip_ref_brackets(m.group('target')))
        note = model.add_node(DiagramNode(
            name=_next_note_name(model), label=clean_label('\n'.join(body)),
            node_type='note', parent=target, side=m.group('pos').lower(),
            color=resolve_color(m.group('color')),
        ))
        model.add_edge(DiagramEdge(
            source=note.name, target=target, rel_type='anchor',
            style='dashed', arrow_end=False,
        ))
        return end

    return None


def _link_note_relation(model: DiagramModel, edge: DiagramEdge) -> DiagramEdge:
    """Relations touching a note are rendered as dashed anchors."""
    for name in (edge.source, edge.target):
        node = model.get_node(name)
        if node is not None and node.node_type == 'note':
            edge.rel_type = 'anchor'
            edge.style = 'dashed'
            edge.arrow_end = False
            edge.arrow_start = False
    return edge


# ─── Class diagrams ───────────────────────────────────────────────

_CLASS_DECL_RE = re.compile(
    r'^(?P<kw>abstract\s+class|abstract|class|interface|enum|annotation)\s+'
    r'(?:"(?P<qlabel>[^"]+)"\s+as\s+(?P<alias>[\w.$]+)|"(?P<qname>[^"]+)"|(?P<name>[\w.$]+)(?P<generic><(?!<)[^>]*>)?)'
    r'(?:\s+(?P<inherit>extends|implements)\s+(?P<parents>[\w.$]+(?:\s*,\s*[\w.$]+)*))?'
    r'\s*' + _STEREO + r'\s*' + _COLOR + r'\s*(?P<brace>\{)?\s*(?P<close>\})?\s*$',
    re.IGNORECASE,
)
_MODIFIER_RE = re.compile(r'\{(static|classifier|abstract)\}', re.IGNORECASE)
_CLASS_REL_RE = re.compile(
    r'^(?P<left>"[^"]+"|[\w.$]+)\s*(?:"(?P<lcard>[^"]*)"\s*)?'
    r'(?P<lhead><\||<|\*|o|\+|#)?'
    r'(?P<shaft>[-.=]+(?:\[[^\]]*\][-.=]*)?(?:(?:up|down|left|right|u|d|l|r)[-.=]+)?)'
    r'(?P<rhead>\|>|>|\*|o(?=\s)|\+|#)?'
    r'\s*(?:"(?P<rcard>[^"]*)"\s*)?(?P<right>"[^"]+"|[\w.$]+)\s*(?::\s*(?P<label>.*))?$'
)

# (head, side, relation, source side), checked in order; first match wins.
# Multi-character heads come before single-character ones.
_CLASS_HEADS = [
    ('<|', 'left', 'extends', 'right'),
    ('|>', 'right', 'extends', 'left'),
    ('*', 'left', 'composition', 'left'),
    ('*', 'right', 'composition', 'right'),
    ('o', 'left', 'aggregation', 'left'),
    ('o', 'right', 'aggregation', 'right'),
    ('<', 'left', 'association', 'right'),
    ('>', 'right', 'association', 'left'),
]

_CLASS_KEYWORDS = {
    'abstract class': 'abstract', 'abstract': 'abstract', 'class': 'class',
    'interface': 'interface', 'enum': 'enum', 'annotation': 'annotation',
}


def parse_member(text: str, enum_constant: bool = False) -> Optional[Member]:
    """Parse a class body line into a Member."""
    flags = {m.group(1).lower() for m in _MODIFIER_RE.finditer(text)}
    text = _MODIFIER_RE.sub('', text).strip()
    if not text:
        return None

    visibility = '' if enum_constant else '+'
    if len(text) > 1 and text[0] in '+-#~':
        visibility = text[0]
        text = text[1:].strip()

    is_method = '(' in text
    if is_method:
        close = text.rfind(')')
        if close < 0:
            name, type_ = text, ''
        else:
            name = text[:close + 1].strip()
            type_ = text[close + 1:].strip().lstrip(':').strip()
    elif ':' in text:
        name, _, type_ = text.partition(':')
        name, type_ = name.strip(), type_.strip()
    else:
        name, type_ = text, ''

    return Member(
        name=name, type=type_, visibility=visibility, is_method=is_method,
        is_static=bool(flags & {'static', 'classifier'}),
        is_abstract='abstract' in flags,
    )


def _classify_class_arrow(lhead: str, shaft: str, rhead: str) -> Tuple[str, bool]:
    """Return (relation type, reversed) for a class arrow. reversed: source is the right name."""
    dotted = '.' in shaft
    relation, source_side = 'association', 'left'
    for head, side, rel, source in _CLASS_HEADS:
        if (side == 'left' and lhead == head) or (side == 'right' and rhead == head):
            relation, source_side = rel, source
            break
    if dotted and relation == 'extends':
        relation = 'implements'
    elif dotted and relation == 'association':
        relation = 'dependency'
    return relation, source_side == 'right'


def _read_class_body(lines: List[SourceLine], start: int, node: DiagramNode) -> int:
    """Scan a { ... } class body. Returns the index of the closing line."""
    enum_body = node.node_type == 'enum'
    i = start + 1
    while i < len(lines):
        text = lines[i].text
        if text.startswith('}'):
            return i
        if not _SEPARATOR_RE.match(text) and text != '{':
            member = parse_member(text, enum_constant=enum_body and '(' not in text)
            if member is not None:
                (node.methods if member.is_method else node.attributes).append(member)
        i += 1
    return len(lines) - 1


def _parse_class_declaration(lines: List[SourceLine], i: int, model: DiagramModel) -> Optional[int]:
    m = _CLASS_DECL_RE.match(lines[i].text)
    if not m:
        return None
    if m.group('qlabel'):
        name, label = m.group('alias'), clean_label(m.group('qlabel'))
    elif m.group('qname'):
        name = label = clean_label(m.group('qname'))
    else:
        name = m.group('name')
        label = name + (m.group('generic') or '')

    node_type = _CLASS_KEYWORDS[re.sub(r'\s+', ' ', m.group('kw').lower())]
    node = model.ensure_node(name, label=label, node_type=node_type)
    node.node_type = node_type
    node.label = label
    if m.group('stereo'):
        node.stereotype = m.group('stereo').strip()
    if m.group('color'):
        node.color = resolve_color(m.group('color'))

    if m.group('parents'):
        rel = 'extends' if m.group('inherit').lower() == 'extends' else 'implements'
        for parent in re.split(r'\s*,\s*', m.group('parents').strip()):
            model.ensure_node(parent, node_type='interface' if rel == 'implements' else 'class')
            model.add_edge(DiagramEdge(source=name, target=parent, rel_type=rel,
                                       style='dashed' if rel == 'implements' else 'solid'))

    if m.group('brace') and not m.group('close'):
        return _read_class_body(lines, i, node)
    return i


def parse_class_diagram(lines: List[SourceLine], model: DiagramModel) -> None:
    i = 0
    while i < len(lines):
        line = lines[i]

        end = _parse_class_declaration(lines, i, model)
        if end is None:
            end = parse_note(lines, i, model)
        if end is not None:
            i = end + 1
            continue

        m = _CLASS_REL_RE.match(line.text)
        if m:
            relation, reversed_ = _classify_class_arrow(
                m.group('lhead') or '', m.group('shaft'), m.group('rhead') or '')
            left = _resolve_ref(model, m.group('left'), node_type='class')
            right = _resolve_ref(model, m.group('right'), node_type='class')
            lcard, rcard = clean_label(m.group('lcard')), clean_label(m.group('rcard'))
            has_head = bool(m.group('lhead') or m.group('rhead'))
            source, target = (right, left) if reversed_ else (left, right)
            if reversed_:
                lcard, rcard = rcard, lcard
            edge = DiagramEdge(
                source=source, target=target, rel_type=relation,
                label=clean_label(m.group('label')),
                style='dashed' if '.' in m.group('shaft') else 'solid',
                arrow_end=has_head and relation not in ('composition', 'aggregation'),
                source_cardinality=lcard, target_cardinality=rcard,
            )
            model.add_edge(_link_note_relation(model, edge))
        elif line.text not in ('}', '{'):
            model.note_unmatched(line.number, line.text)
        i += 1


# ─── Sequence diagrams ────────────────────────────────────────────

_PARTICIPANT_RE = re.compile(
    r'^(?:create\s+)?(?P<kw>participant|actor|boundary|control|entity|database|collections|queue)\s+'
    + _DECL_NAME + r'\s*' + _STEREO + r'\s*' + _COLOR + r'\s*(?:order\s+-?\d+)?\s*$',
    re.IGNORECASE,
)
_MESSAGE_RE = re.compile(
    r'^(?P<src>"[^"]+"|[\w.]+)\s*'
    r'(?P<arrow>[xo]?<-{1,2}>[xo]?'
    r'|[xo]?<{1,2}-{1,2}(?:\[[^\]]*\])?-?[xo]?'
    r'|[xo]?-{1,2}(?:\[[^\]]*\])?-?>{1,2}[xo]?)'
    r'(?:\+\+|--|\*\*|!!)?\s*(?P<dst>"[^"]+"|[\w.]+)\s*(?:\+\+|--|\*\*|!!)?\s*(?::\s*(?P<label>.*))?$'
)
_RETURN_RE = re.compile(r'^return\b\s*(?P<label>.*)$', re.IGNORECASE)
_SEQ_NOTE_RE = re.compile(
    r'^(?:note|hnote|rnote)\s+(?P<pos>left|right|over)'
    r'(?:\s+(?:of\s+)?(?P<targets>[\w.]+(?:\s*,\s*[\w.]+)*))?\s*' + _COLOR +
    r'\s*(?::\s*(?P<text>.*))?$',
    re.IGNORECASE,
)
_REF_BLOCK_RE = re.compile(r'^ref\s+over\s+[^:]+$', re.IGNORECASE)
_END_REF_RE = re.compile(r'^end\s*ref$', re.IGNORECASE)
_SEQ_IGNORED_RE = re.compile(
    r'^(?:alt|else|opt|loop|par|break|critical|group|end|activate|deactivate|destroy|'
    r'autonumber|newpage|box|ref|and|mainframe)\b'
    r'|^==.*==$|^\.\.\..*$|^\|\|\|$|^\|\|\d+\|\|$',
    re.IGNORECASE,
)


def parse_sequence_diagram(lines: List[SourceLine], model: DiagramModel) -> None:
    order = 0
    calls: List[Tuple[str, str]] = []
    last_message: Optional[DiagramEdge] = None

    i = 0
    while i < len(lines):
        line = lines[i]
        text = line.text

        m = _PARTICIPANT_RE.match(text)
        if m:
            name, label = _decl_identity(m)
            kw = m.group('kw').lower()
            node = model.ensure_node(name, label=label, node_type=kw)
            node.label, node.node_type = label, kw
            node.is_actor = kw == 'actor'
            node.stereotype = (m.group('stereo') or '').strip()
            node.color = resolve_color(m.group('color'))
            i += 1
            continue

        m = _MESSAGE_RE.match(text)
        if m:
            arrow = m.group('arrow')
            src = _resolve_ref(model, m.group('src'), node_type='participant')
            dst = _resolve_ref(model, m.group('dst'), node_type='participant')
            bidirectional = '<' in arrow and '>' in arrow
            if '<' in arrow and not bidirectional:
                src, dst = dst, src
            order += 1
            dashed = '--' in arrow
            last_message = model.add_edge(DiagramEdge(
                source=src, target=dst, rel_type='message',
                label=clean_label(m.group('label')),
                style='dashed' if dashed else 'solid',
                arrow_start=bidirectional, sequence_order=order,
            ))
            if not dashed:
                calls.append((src, dst))
            elif calls and calls[-1] == (dst, src):
                calls.pop()
            i += 1
            continue

        m = _RETURN_RE.match(text)
        if m:
            if calls:
                caller, callee = calls.pop()
                order += 1
                last_message = model.add_edge(DiagramEdge(
                    source=callee, target=caller, rel_type='message',
                    label=clean_label(m.group('label')), style='dashed',
                    sequence_order=order,
                ))
            else:
                model.note_unmatched(line.number, text)
            i += 1
            continue

        m = _SEQ_NOTE_RE.match(text)
        if m:
            if m.group('text') is not None:
                body, end = [m.group('text')], i
            else:
                body, end = collect_block(lines, i, _END_NOTE_RE)
            if m.group('targets'):
                anchor = m.group('targets').split(',')[0].strip()
                anchor = _resolve_ref(model, anchor, node_type='participant')
            elif last_message is not None:
                anchor = last_message.target
            else:
                anchor = None
            order += 1
            model.add_node(DiagramNode(
                name=_next_note_name(model), label=clean_label('\n'.join(body)),
                node_type='note', parent=anchor, side=m.group('pos').lower(),
                order=order, color=resolve_color(m.group('color')),
            ))
            i = end + 1
            continue

        if _REF_BLOCK_RE.match(text):
            _, end = collect_block(lines, i, _END_REF_RE)
            i = end + 1
            continue

        if not _SEQ_IGNORED_RE.match(text):
            model.note_unmatched(line.number, text)
        i += 1


# ─── State diagrams ───────────────────────────────────────────────

_STATE_DECL_RE = re.compile(
    r'^state\s+' + _DECL_NAME + r'\s*' + _STEREO + r'\s*' + _COLOR +
    r'\s*(?P<brace>\{)?\s*(?::\s*(?P<desc>.*))?$',
    re.IGNORECASE,
)
_STATE_TRANSITION_RE = re.compile(
    r'^(?P<src>\[\*\]|\[H\*?\]|[\w.]+)\s*'
    r'(?P<arrow><?-+(?:\[[^\]]*\]-*)?(?:(?:up|down|left|right|u|d|l|r)-+)?>?)'
    r'\s*(?P<dst>\[\*\]|\[H\*?\]|[\w.]+)\s*(?::\s*(?P<label>.*))?$'
)
_STATE_DESC_RE = re.compile(r'^(?P<name>[\w.]+)\s*:\s*(?P<desc>.+)$')
_STATE_STEREOTYPES = {
    'choice': 'choice', 'fork': 'fork', 'join': 'fork',
    'end': 'final', 'start': 'initial', 'history': 'history',
}


def _pseudo_state(model: DiagramModel, token: str, scope: Optional[str], as_source: bool) -> str:
    prefix = f"{scope}." if scope else ""
    if token == '[*]':
        role = 'initial' if as_source else 'final'
        name = f"{prefix}[*].{'start' if as_source else 'end'}"
        return model.ensure_node(name, label='', node_type=role, parent=scope).name
    label = 'H*' if '*' in token else 'H'
    return model.ensure_node(f"{prefix}{token}", label=label, node_type='history', parent=scope).name


def parse_state_diagram(lines: List[SourceLine], model: DiagramModel) -> None:
    composites: List[str] = []

    i = 0
    while i < len(lines):
        line = lines[i]
        text = line.text
        scope = composites[-1] if composites else None

        m = _STATE_DECL_RE.match(text)
        if m:
            name, label = _decl_identity(m)
            stereo = (m.group('stereo') or '').strip().lower()
            node = model.ensure_node(name, label=label, node_type='state', parent=scope)
            node.label = label
            node.node_type = _STATE_STEREOTYPES.get(stereo, 'state')
            node.stereotype = stereo
            if node.parent is None:
                node.parent = scope
            if m.group('color'):
                node.color = resolve_color(m.group('color'))
            if m.group('desc'):
                node.description.append(clean_label(m.group('desc')))
            if m.group('brace'):
                composites.append(name)
            i += 1
            continue

        if text.startswith('}'):
            if composites:
                composites.pop()
            i += 1
            continue

        end = parse_note(lines, i, model)
        if end is not None:
            i = end + 1
            continue

        m = _STATE_TRANSITION_RE.match(text)
        if m:
            arrow = strip_arrow_decorations(m.group('arrow'))
            src_token, dst_token = m.group('src'), m.group('dst')
            if arrow.startswith('<') and not arrow.endswith('>'):
                src_token, dst_token = dst_token, src_token
            if src_token.startswith('['):
                src = _pseudo_state(model, src_token, scope, as_source=True)
            else:
                src = model.ensure_node(src_token, node_type='state', parent=scope).name
            if dst_token.startswith('['):
                dst = _pseudo_state(model, dst_token, scope, as_source=False)
            else:
                dst = model.ensure_node(dst_token, node_type='state', parent=scope).name
            model.add_edge(_link_note_relation(model, DiagramEdge(
                source=src, target=dst, rel_type='transition',
                label=clean_label(m.group('label')),
            )))
            i += 1
            continue

        m = _STATE_DESC_RE.match(text)
        if m:
            node = model.ensure_node(m.group('name'), node_type='state', parent=scope)
            node.description.append(clean_label(m.group('desc')))
            i += 1
            continue

        if text not in ('--', '||'):
            model.note_unmatched(line.number, text)
        i += 1


# ─── Mind maps ────────────────────────────────────────────────────

_MINDMAP_RE = re.compile(
    r'^(?P<marks>\*+|\++|-+)(?P<boxless>_)?\s*(?:\[(?P<color>#\w+)\])?\s*(?P<text>.*)$'
)
_MINDMAP_SIDE_RE = re.compile(r'^(?P<side>left|right)\s+side$', re.IGNORECASE)


def parse_mindmap(lines: List[SourceLine], model: DiagramModel) -> None:
    ancestors: List[DiagramNode] = []
    default_side = 'right'

    i = 0
    while i < len(lines):
        line = lines[i]

        m = _MINDMAP_SIDE_RE.match(line.text)
        if m:
            default_side = m.group('side').lower()
            i += 1
            continue

        m = _MINDMAP_RE.match(line.text)
        if not m or not m.group('text'):
            model.note_unmatched(line.number, line.text)
            i += 1
            continue

        text = m.group('text').strip()
        if text.startswith(':'):
            parts = [text[1:]]
            while not parts[-1].rstrip().endswith(';') and i + 1 < len(lines):
                i += 1
                parts.append(lines[i].text)
            text = '\n'.join(parts).rstrip().rstrip(';')

        marks = m.group('marks')
        level = len(marks)
        while ancestors and ancestors[-1].level >= level:
            ancestors.pop()
        parent = ancestors[-1] if ancestors else None

        if parent is None:
            side = ''
        elif marks[0] == '-':
            side = 'left'
        elif marks[0] == '+':
            side = 'right'
        elif parent.side:
            side = parent.side
        else:
            side = default_side

        if parent is None:
            node_type = 'root'
        else:
            node_type = 'boxless' if m.group('boxless') else 'topic'

        node = model.add_node(DiagramNode(
            name=f"m{len(model.nodes)}", label=clean_label(text), node_type=node_type,
            level=level, side=side, parent=parent.name if parent else None,
            color=resolve_color(m.group('color')),
        ))
        if parent is not None:
            model.add_edge(DiagramEdge(
                source=parent.name, target=node.name, rel_type='branch', arrow_end=False,
            ))
        ancestors.append(node)
        i += 1


# ─── Entity-relationship diagrams ─────────────────────────────────

_ENTITY_DECL_RE = re.compile(
    r'^entity\s+' + _DECL_NAME + r'\s*' + _STEREO + r'\s*' + _COLOR +
    r'\s*(?P<brace>\{)?\s*(?P<close>\})?\s*$',
    re.IGNORECASE,
)
_ENTITY_ATTR_RE = re.compile(
    r'^(?P<mandatory>\*)?\s*(?P<name>[^:<]+?)\s*(?::\s*(?P<type>[^<]+?))?\s*(?P<tags>(?:<<\s*\w+\s*>>\s*)*)$'
)
_ER_REL_RE = re.compile(
    r'^(?P<left>"[^"]+"|[\w.$]+)\s*'
    r'(?P<lend>\|o|\|\||\}o|\}\|)?(?P<line>-+|\.+)(?P<rend>o\||\|\||o\{|\|\{|>)?'
    r'\s*(?P<right>"[^"]+"|[\w.$]+)\s*(?::\s*(?P<label>.*))?$'
)

LEFT_CARDINALITY = {'|o': '0..1', '||': '1', '}o': '0..*', '}|': '1..*'}
RIGHT_CARDINALITY = {'o|': '0..1', '||': '1', 'o{': '0..*', '|{': '1..*'}


def _read_entity_body(lines: List[SourceLine], start: int, node: DiagramNode) -> int:
    """Scan a { ... } entity body. Returns the index of the closing line."""
    key_columns = 0
    separator_seen = False
    i = start + 1
    while i < len(lines):
        text = lines[i].text
        if text.startswith('}'):
            break
        if _SEPARATOR_RE.match(text):
            if not separator_seen:
                key_columns = len(node.columns)
                separator_seen = True
        else:
            m = _ENTITY_ATTR_RE.match(text)
            if m:
                tags = {t.upper() for t in re.findall(r'<<\s*(\w+)\s*>>', m.group('tags') or '')}
                node.columns.append(EntityAttribute(
                    name=m.group('name').strip(),
                    type=(m.group('type') or '').strip(),
                    primary_key='PK' in tags,
                    foreign_key='FK' in tags,
                    mandatory=bool(m.group('mandatory')),
                ))
        i += 1
    for column in node.columns[:key_columns]:
        column.primary_key = True
    return min(i, len(lines) - 1)


def parse_er_diagram(lines: List[SourceLine], model: DiagramModel) -> None:
    i = 0
    while i < len(lines):
        line = lines[i]

        m = _ENTITY_DECL_RE.match(line.text)
        if m:
            name, label = _decl_identity(m)
            node = model.ensure_node(name, label=label, node_type='entity')
            node.label = label
            node.stereotype = (m.group('stereo') or '').strip()
            node.color = resolve_color(m.group('color'))
            if m.group('brace') and not m.group('close'):
                i = _read_entity_body(lines, i, node)
            i += 1
            continue

        end = parse_note(lines, i, model)
        if end is not None:
            i = end + 1
            continue

        m = _ER_REL_RE.match(line.text)
        if m:
            left = _resolve_ref(model, m.group('left'), node_type='entity')
            right = _resolve_ref(model, m.group('right'), node_type='entity')
            lend, rend = m.group('lend') or '', m.group('rend') or ''
            crows_foot = bool(lend) or rend in RIGHT_CARDINALITY
            dotted = m.group('line').startswith('.')
            edge = DiagramEdge(
                source=left, target=right,
                rel_type='relationship' if crows_foot else ('dependency' if dotted else 'association'),
                label=clean_label(m.group('label')),
                style='dashed' if dotted else 'solid',
                arrow_end=rend == '>',
                source_cardinality=LEFT_CARDINALITY.get(lend, ''),
                target_cardinality=RIGHT_CARDINALITY.get(rend, ''),
            )
            model.add_edge(_link_note_relation(model, edge))
        elif line.text not in ('}', '{'):
            model.note_unmatched(line.number, line.text)
        i += 1


# ─── Deployment / component diagrams ──────────────────────────────

ARCHETYPES = (
    'node', 'database', 'cloud', 'artifact', 'component', 'folder', 'frame',
    'package', 'storage', 'queue', 'card', 'file', 'rectangle', 'stack',
    'agent', 'interface', 'collections', 'hexagon', 'actor', 'boundary',
    'control', 'entity',
)

_DEPLOY_DECL_RE = re.compile(
    r'^(?P<kw>' + '|'.join(ARCHETYPES) + r')\s+'
    r'(?:\[(?P<blabel>[^\]]+)\](?:\s+as\s+(?P<balias>[\w.$]+))?|' + _DECL_NAME + r')'
    r'\s*' + _STEREO + r'\s*' + _COLOR + r'\s*(?P<brace>\{)?\s*(?P<close>\})?\s*$',
    re.IGNORECASE,
)
_COMPONENT_SHORT_RE = re.compile(
    r'^\[(?P<label>[^\]]+)\](?:\s+as\s+(?P<alias>[\w.$]+))?\s*' + _STEREO + r'\s*' + _COLOR + r'\s*$'
)
_INTERFACE_SHORT_RE = re.compile(r'^\(\)\s+' + _DECL_NAME + r'\s*' + _COLOR + r'\s*$')
_ENDPOINT = r'(?:\[[^\]]+\]|"[^"]+"|\(\)\s*[\w.$]+|[\w.$]+)'
_DEPLOY_REL_RE = re.compile(
    r'^(?P<left>' + _ENDPOINT + r')\s*(?P<arrow>' + _LINK_ARROW + r')\s*'
    r'(?P<right>' + _ENDPOINT + r')\s*(?::\s*(?P<label>.*))?$'
)


def classify_link(arrow: str) -> Tuple[str, bool, bool, str]:
    """Classify a generic link arrow. Returns (relation, reversed, has_head, style)."""
    core = strip_arrow_decorations(arrow)
    dotted = '.' in core
    if core.startswith('<|') or core.endswith('|>'):
        return 'extends', core.startswith('<|'), True, 'dashed' if dotted else 'solid'
    has_left = core.startswith('<')
    has_right = core.endswith('>')
    relation = 'dependency' if dotted else 'association'
    return relation, has_left and not has_right, has_left or has_right, 'dashed' if dotted else 'solid'


def _deployment_ref(model: DiagramModel, ref: str) -> str:
    ref = ref.strip()
    if ref.startswith('()'):
        return _resolve_ref(model, ref[2:].strip(), node_type='interface')
    if ref.startswith('['):
        return _resolve_ref(model, ref[1:-1], node_type='component')
    return _resolve_ref(model, ref, node_type='component')


def _declare_contained(model: DiagramModel, node: DiagramNode, containers: List[str]) -> None:
    if containers and node.parent is None and node.name != containers[-1]:
        node.parent = containers[-1]
        model.add_edge(DiagramEdge(
            source=containers[-1], target=node.name, rel_type='containment', arrow_end=False,
        ))


def parse_deployment_diagram(lines: List[SourceLine], model: DiagramModel) -> None:
    containers: List[str] = []

    i = 0
    while i < len(lines):
        line = lines[i]
        text = line.text

        m = _DEPLOY_DECL_RE.match(text)
        if m:
            if m.group('blabel'):
                label = clean_label(m.group('blabel'))
                name = m.group('balias') or label
            else:
                name, label = _decl_identity(m)
            kw = m.group('kw').lower()
            node = model.ensure_node(name, label=label, node_type=kw)
            node.label, node.node_type = label, kw
            node.is_actor = kw == 'actor'
            node.stereotype = (m.group('stereo') or '').strip()
            node.color = resolve_color(m.group('color'))
            _declare_contained(model, node, containers)
            if m.group('brace') and not m.group('close'):
                containers.append(name)
            i += 1
            continue

        m = _COMPONENT_SHORT_RE.match(text)
        if m:
            label = clean_label(m.group('label'))
            node = model.ensure_node(m.group('alias') or label, label=label, node_type='component')
            node.stereotype = (m.group('stereo') or '').strip()
            node.color = resolve_color(m.group('color'))
            _declare_contained(model, node, containers)
            i += 1
            continue

        m = _INTERFACE_SHORT_RE.match(text)
        if m:
            name, label = _decl_identity(m)
            node = model.ensure_node(name, label=label, node_type='interface')
            node.color = resolve_color(m.group('color'))
            _declare_contained(model, node, containers)
            i += 1
            continue

        if text.startswith('}'):
            if containers:
                containers.pop()
            i += 1
            continue

        end = parse_note(lines, i, model)
        if end is not None:
            i = end + 1
            continue

        m = _DEPLOY_REL_RE.match(text)
        if m:
            relation, reversed_, has_head, style = classify_link(m.group('arrow'))
            left = _deployment_ref(model, m.group('left'))
            right = _deployment_ref(model, m.group('right'))
            source, target = (right, left) if reversed_ else (left, right)
            model.add_edge(_link_note_relation(model, DiagramEdge(
                source=source, target=target, rel_type=relation,
                label=clean_label(m.group('label')), style=style, arrow_end=has_head,
            )))
            i += 1
            continue

        model.note_unmatched(line.number, text)
        i += 1


# ─── Use case diagrams ────────────────────────────────────────────

_ACTOR_DECL_RE = re.compile(
    r'^actor/?\s+(?::(?P<clabel>[^:]+):(?:\s+as\s+(?P<calias>[\w.$]+))?|' + _DECL_NAME + r')'
    r'\s*' + _STEREO + r'\s*' + _COLOR + r'\s*$',
    re.IGNORECASE,
)
_ACTOR_SHORT_RE = re.compile(
    r'^:(?P<label>[^:]+):/?(?:\s+as\s+(?P<alias>[\w.$]+))?\s*' + _STEREO + r'\s*' + _COLOR + r'\s*$'
)
_USECASE_DECL_RE = re.compile(
    r'^usecase/?\s+(?:\((?P<plabel>[^)]+)\)(?:\s+as\s+(?P<palias>[\w.$]+))?|' + _DECL_NAME + r')'
    r'\s*' + _STEREO + r'\s*' + _COLOR + r'\s*$',
    re.IGNORECASE,
)
_USECASE_SHORT_RE = re.compile(
    r'^\((?P<label>[^)]+)\)/?(?:\s+as\s+\(?(?P<alias>[\w.$]+)\)?)?\s*' + _STEREO + r'\s*' + _COLOR + r'\s*$'
)
_BOUNDARY_RE = re.compile(r'^(?:rectangle|package|frame|folder|node|cloud)\b.*\{\s*$', re.IGNORECASE)
_UC_ENDPOINT = r'(?::[^:]+:|\([^)]+\)|"[^"]+"|[\w.$]+)'
_USECASE_REL_RE = re.compile(
    r'^(?P<left>' + _UC_ENDPOINT + r')\s*(?P<arrow>' + _LINK_ARROW + r')\s*'
    r'(?P<right>' + _UC_ENDPOINT + r')\s*(?::\s*(?P<label>.*))?$'
)


def _usecase_ref(model: DiagramModel, ref: str) -> str:
    ref = ref.strip()
    if ref.startswith('('):
        return _resolve_ref(model, ref[1:-1], node_type='usecase')
    if ref.startswith(':'):
        return _resolve_ref(model, ref[1:-1], node_type='actor', is_actor=True)
    return _resolve_ref(model, ref, node_type='actor', is_actor=True)


def parse_usecase_diagram(lines: List[SourceLine], model: DiagramModel) -> None:
    i = 0
    while i < len(lines):
        line = lines[i]
        text = line.text

        m = _ACTOR_DECL_RE.match(text)
        if m:
            if m.group('clabel'):
                label = clean_label(m.group('clabel'))
                name = m.group('calias') or label
            else:
                name, label = _decl_identity(m)
            node = model.ensure_node(name, label=label, node_type='actor', is_actor=True)
            node.label = label
            node.stereotype = (m.group('stereo') or '').strip()
            node.color = resolve_color(m.group('color'))
            i += 1
            continue

        m = _ACTOR_SHORT_RE.match(text)
        if m:
            label = clean_label(m.group('label'))
            node = model.ensure_node(m.group('alias') or label, label=label, node_type='actor', is_actor=True)
            node.color = resolve_color(m.group('color'))
            i += 1
            continue

        m = _USECASE_DECL_RE.match(text)
        if m:
            if m.group('plabel'):
                label = clean_label(m.group('plabel'))
                name = m.group('palias') or label
            else:
                name, label = _decl_identity(m)
            node = model.ensure_node(name, label=label, node_type='usecase')
            node.label = label
            node.stereotype = (m.group('stereo') or '').strip()
            node.color = resolve_color(m.group('color'))
            i += 1
            continue

        m = _USECASE_SHORT_RE.match(text)
        if m:
            label = clean_label(m.group('label'))
            node = model.ensure_node(m.group('alias') or label, label=label, node_type='usecase')
            node.color = resolve_color(m.group('color'))
            i += 1
            continue

        if _BOUNDARY_RE.match(text) or text.startswith('}'):
            i += 1
            continue

        end = parse_note(lines, i, model)
        if end is not None:
            i = end + 1
            continue

        m = _USECASE_REL_RE.match(text)
        if m:
            relation, reversed_, has_head, style = classify_link(m.group('arrow'))
            label = clean_label(m.group('label'))
            lowered = label.lower()
            if 'include' in lowered:
                relation, style = 'include', 'dashed'
            elif 'extend' in lowered:
                relation, style = 'extend', 'dashed'
            left = _usecase_ref(model, m.group('left'))
            right = _usecase_ref(model, m.group('right'))
            source, target = (right, left) if reversed_ else (left, right)
            model.add_edge(_link_note_relation(model, DiagramEdge(
                source=source, target=target, rel_type=relation,
                label=label, style=style, arrow_end=has_head,
            )))
            i += 1
            continue

        model.note_unmatched(line.number, text)
        i += 1


# ─── Dispatch ─────────────────────────────────────────────────────

KIND_PARSERS: Dict[str, Callable[[List[SourceLine], DiagramModel], None]] = {
    'class': parse_class_diagram,
    'sequence': parse_sequence_diagram,
    'state': parse_state_diagram,
    'mindmap': parse_mindmap,
    'er': parse_er_diagram,
    'deployment': parse_deployment_diagram,
    'usecase': parse_usecase_diagram,
}


# ─── CLI ──────────────────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(description="Detect and parse a PlantUML diagram into model JSON")
    parser.add_argument("--input", "-i", help="Input .puml file")
    parser.add_argument("--stdin", action="store_true", help="Read from stdin")
    parser.add_argument("--detect-only", action="store_true", help="Print the detected diagram kind")
    args = parser.parse_args()

    if args.stdin:
        content = sys.stdin.read()
    elif args.input:
        input_path = Path(args.input)
        if not input_path.exists():
            print(f"Error: Input file not found: {input_path}", file=sys.stderr)
            sys.exit(1)
        content = input_path.read_text(encoding='utf-8', errors='ignore')
    else:
        parser.error("Either --input or --stdin is required")
        return

    if args.detect_only:
        print(detect_diagram_type(content))
        return

    from puml2drawio.converter import parse
    model = parse(content)
    print(json.dumps(to_json(model), indent=2))


if __name__ == "__main__":
    main()
