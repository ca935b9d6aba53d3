from __future__ import annotations

import sys
import unittest
import xml.etree.ElementTree as ET
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

from puml2drawio.converter import parse
from puml2drawio.diagram_model import DiagramEdge, DiagramModel, DiagramNode
from puml2drawio.layout import compute_layout, drawable_edges
from puml2drawio.model_to_drawio import (
    compress_diagram_data, decompress_diagram_data, html_value, model_to_drawio,
)
from puml2drawio.model_to_svg import SVG_NS, model_to_svg

FIXED_TIME = "2024-01-01T00:00:00.000Z"

CLASS_SOURCE = "\n".join([
    "@startuml",
    "class User {",
    "  - id : int",
    "  + getName() : String",
    "}",
    "interface Repo",
    "Repo <|.. User",
    'User "1" *-- "many" Order : owns',
    "@enduml",
])


def _cells(xml_text: str):
    root = ET.fromstring(xml_text)
    return root.findall(".//mxCell")


def _svg_edges(svg_text: str):
    return ET.fromstring(svg_text).findall(f"{{{SVG_NS}}}g[@class='edge']")


class DrawioStructureTests(unittest.TestCase):
    def test_document_shape(self) -> None:
        xml_text = model_to_drawio(parse(CLASS_SOURCE), modified=FIXED_TIME)
        self.assertTrue(xml_text.startswith('<?xml version="1.0" encoding="UTF-8"?>'))
        root = ET.fromstring(xml_text)
        self.assertEqual(root.tag, "mxfile")
        self.assertEqual(root.get("modified"), FIXED_TIME)
        diagram = root.find("diagram")
        self.assertEqual(diagram.get("name"), "Page-1")
        self.assertIsNotNone(diagram.find("mxGraphModel/root"))

    def test_ids_unique_and_edges_reference_cells(self) -> None:
        cells = _cells(model_to_drawio(parse(CLASS_SOURCE), modified=FIXED_TIME))
        ids = [c.get("id") for c in cells]
        self.assertEqual(len(ids), len(set(ids)))
        self.assertEqual(ids[:2], ["0", "1"])
        known = set(ids)
        for cell in cells:
            if cell.get("edge") == "1":
                self.assertIn(cell.get("source"), known)
                self.assertIn(cell.get("target"), known)

    def test_edge_count_matches_drawable_edges_and_svg(self) -> None:
        model = parse(CLASS_SOURCE)
        layout = compute_layout(model)
        cells = _cells(model_to_drawio(model, layout, modified=FIXED_TIME))
        edge_cells = [c for c in cells if c.get("edge") == "1"]
        self.assertEqual(len(edge_cells), len(drawable_edges(model, layout)))
        self.assertEqual(len(_svg_edges(model_to_svg(model, layout))), len(edge_cells))

    def test_member_rows_are_children_of_class(self) -> None:
        cells = _cells(model_to_drawio(parse(CLASS_SOURCE), modified=FIXED_TIME))
        user = next(c for c in cells if c.get("value") == "User")
        rows = [c for c in cells if c.get("parent") == user.get("id")]
        self.assertEqual([c.get("value") for c in rows if c.get("value")], ["- id: int", "+ getName(): String"])

    def test_multiplicities_become_edge_labels(self) -> None:
        cells = _cells(model_to_drawio(parse(CLASS_SOURCE), modified=FIXED_TIME))
        labels = [c.get("value") for c in cells if "edgeLabel" in (c.get("style") or "")]
        self.assertEqual(sorted(labels), ["1", "many"])

    def test_labels_are_html_escaped(self) -> None:
        cells = _cells(model_to_drawio(parse('class "A<B>" as AB'), modified=FIXED_TIME))
        values = [c.get("value") for c in cells]
        self.assertIn("A&lt;B&gt;", values)

    def test_html_value_breaks_lines(self) -> None:
        self.assertEqual(html_value("a & b\nc"), "a &amp; b<br>c")

    def test_title_names_the_page(self) -> None:
        root = ET.fromstring(model_to_drawio(parse("title Billing\nclass A"), modified=FIXED_TIME))
        self.assertEqual(root.find("diagram").get("name"), "Billing")

    def test_compact_output_is_single_line(self) -> None:
        xml_text = model_to_drawio(parse(CLASS_SOURCE), compact=True, modified=FIXED_TIME)
        self.assertNotIn("\n", xml_text)

    def test_compressed_payload_round_trips(self) -> None:
        model = parse(CLASS_SOURCE)
        xml_text = model_to_drawio(model, compress=True, modified=FIXED_TIME)
        diagram = ET.fromstring(xml_text).find("diagram")
        self.assertIsNone(diagram.find("mxGraphModel"))
        graph = ET.fromstring(decompress_diagram_data(diagram.text))
        self.assertEqual(graph.tag, "mxGraphModel")
        plain = ET.fromstring(model_to_drawio(model, compact=True, modified=FIXED_TIME))
        self.assertEqual(len(graph.findall(".//mxCell")), len(plain.findall(".//mxCell")))

    def test_codec_keeps_unicode(self) -> None:
        text = '<mxGraphModel><root><mxCell id="0" value="«entity» ü"/></root></mxGraphModel>'
        self.assertEqual(decompress_diagram_data(compress_diagram_data(text)), text)
        self.assertEqual(decompress_diagram_data(text), text)

    def test_deterministic_with_fixed_timestamp(self) -> None:
        first = model_to_drawio(parse(CLASS_SOURCE), modified=FIXED_TIME)
        second = model_to_drawio(parse(CLASS_SOURCE), modified=FIXED_TIME)
        self.assertEqual(first, second)

    def test_dangling_edge_is_dropped(self) -> None:
        model = DiagramModel(kind="class")
        model.add_node(DiagramNode(name="A", label="A", node_type="class"))
        model.add_edge(DiagramEdge(source="A", target="Ghost"))
        model.freeze()
        cells = _cells(model_to_drawio(model, modified=FIXED_TIME))
        self.assertEqual([c for c in cells if c.get("edge") == "1"], [])
        self.assertEqual(_svg_edges(model_to_svg(model)), [])


class DrawioKindTests(unittest.TestCase):
    def test_activity_omits_markers(self) -> None:
        model = parse("start\n:Step1;\nif (x) then (yes)\n:A;\nelse (no)\n:B;\nendif\nstop")
        cells = _cells(model_to_drawio(model, modified=FIXED_TIME))
        vertices = [c for c in cells if c.get("vertex") == "1"]
        edges = [c for c in cells if c.get("edge") == "1"]
        self.assertEqual(len(vertices), 7)
        self.assertEqual(len(edges), 7)
        self.assertTrue(all("rhombus" in c.get("style") for c in vertices if c.get("value") == "x"))

    def test_swimlane_containers(self) -> None:
        model = parse("|#AntiqueWhite|Customer|\nstart\n:Order;\n|Shop|\nstop")
        cells = _cells(model_to_drawio(model, modified=FIXED_TIME))
        lanes = [c for c in cells if (c.get("style") or "").startswith("swimlane;html=1;startSize=30")]
        self.assertEqual([c.get("value") for c in lanes], ["Customer", "Shop"])
        self.assertIn("swimlaneFillColor=#FAEBD7;", lanes[0].get("style"))

    def test_er_crows_foot_markers(self) -> None:
        model = parse("entity User {\n * id : int\n}\nentity Order {\n * id : int\n}\nUser ||--o{ Order")
        cells = _cells(model_to_drawio(model, modified=FIXED_TIME))
        edge = next(c for c in cells if c.get("edge") == "1")
        self.assertIn("startArrow=ERmandOne;", edge.get("style"))
        self.assertIn("endArrow=ERzeroToMany;", edge.get("style"))

    def test_sequence_lifelines(self) -> None:
        model = parse("participant Alice\nparticipant Bob\nAlice -> Bob : hi\nBob --> Alice : ok")
        cells = _cells(model_to_drawio(model, modified=FIXED_TIME))
        lifelines = [c for c in cells if "umlLifeline" in (c.get("style") or "")]
        self.assertEqual(len(lifelines), 2)
        reply = [c for c in cells if c.get("value") == "ok"][0]
        self.assertIn("dashed=1", reply.get("style"))

    def test_state_pseudo_states(self) -> None:
        model = parse("[*] --> Idle\nIdle --> [*]")
        styles = [c.get("style") or "" for c in _cells(model_to_drawio(model, modified=FIXED_TIME))]
        self.assertTrue(any("startState" in s for s in styles))
        self.assertTrue(any("endState" in s for s in styles))

    def test_usecase_actor_shape(self) -> None:
        model = parse("actor User\n(Login)\nUser --> (Login)")
        cells = _cells(model_to_drawio(model, modified=FIXED_TIME))
        user = next(c for c in cells if c.get("value") == "User")
        self.assertIn("shape=umlActor", user.get("style"))


class SvgPreviewTests(unittest.TestCase):
    def test_svg_document(self) -> None:
        svg_text = model_to_svg(parse("title Billing\n" + CLASS_SOURCE))
        root = ET.fromstring(svg_text)
        self.assertEqual(root.tag, f"{{{SVG_NS}}}svg")
        self.assertEqual(root.find(f"{{{SVG_NS}}}title").text, "Billing")
        marker_ids = {m.get("id") for m in root.iter(f"{{{SVG_NS}}}marker")}
        self.assertTrue({"arrow", "hollow", "diamond"} <= marker_ids)

    def test_one_group_per_placed_node(self) -> None:
        model = parse("start\n:a;\nif (x) then (yes)\n:b;\nelse (no)\n:c;\nendif\nstop")
        root = ET.fromstring(model_to_svg(model))
        nodes = root.findall(f"{{{SVG_NS}}}g[@class='node']")
        self.assertEqual(len(nodes), sum(1 for n in model.nodes if not n.is_marker))

    def test_multiline_labels_use_tspans(self) -> None:
        root = ET.fromstring(model_to_svg(parse("class A\nnote right of A\none\ntwo\nend note")))
        spans = [s.text for s in root.iter(f"{{{SVG_NS}}}tspan")]
        self.assertIn("one", spans)
        self.assertIn("two", spans)

    def test_group_headers_use_labels(self) -> None:
        model = parse("start\npartition P {\n:A;\n}\npartition P {\n:B;\n}\nstop")
        root = ET.fromstring(model_to_svg(model))
        headers = [t.text for g in root.findall(f"{{{SVG_NS}}}g[@class='group']")
                   for t in g.iter(f"{{{SVG_NS}}}text")]
        self.assertEqual(headers, ["P", "P"])


if __name__ == "__main__":
    unittest.main()
