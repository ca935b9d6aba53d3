from __future__ import annotations

import dataclasses
import sys
import unittest
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

from puml2drawio.converter import parse
from puml2drawio.diagram_model import DiagramEdge, DiagramModel, DiagramNode
from puml2drawio.layout import (
    MARGIN, Box, compute_layout, drawable_edges, node_size, route_edge,
)


class GridLayoutTests(unittest.TestCase):
    def test_wraps_after_four_columns(self) -> None:
        model = parse("class A\nclass B\nclass C\nclass D\nclass E")
        layout = compute_layout(model)
        self.assertEqual(layout.boxes["A"], Box(40, 40, 160, 46))
        self.assertEqual(layout.boxes["B"].x, 260)
        self.assertEqual(layout.boxes["D"].y, 40)
        self.assertEqual((layout.boxes["E"].x, layout.boxes["E"].y), (MARGIN, 146))

    def test_deterministic(self) -> None:
        text = "class A {\n +x : int\n}\nclass B\nA --> B"
        first = compute_layout(parse(text))
        second = compute_layout(parse(text))
        self.assertEqual(dict(first.boxes), dict(second.boxes))
        self.assertEqual((first.width, first.height), (second.width, second.height))

    def test_layout_is_immutable(self) -> None:
        layout = compute_layout(parse("class A"))
        with self.assertRaises(TypeError):
            layout.boxes["B"] = Box(0, 0, 1, 1)
        with self.assertRaises(dataclasses.FrozenInstanceError):
            layout.width = 10

    def test_coordinates_are_integers(self) -> None:
        for text in ("class A\nclass B\nA --> B",
                     "@startmindmap\n* r\n** a\n-- b\n@endmindmap",
                     "start\n:a;\nif (x) then\n:b;\nendif\nstop"):
            layout = compute_layout(parse(text))
            for box in list(layout.boxes.values()) + list(layout.groups.values()):
                for value in (box.x, box.y, box.width, box.height):
                    self.assertIsInstance(value, int)

    def test_minimum_canvas(self) -> None:
        layout = compute_layout(parse("class A"))
        self.assertGreaterEqual(layout.width, 200)
        self.assertGreaterEqual(layout.height, 120)

    def test_class_box_grows_with_members(self) -> None:
        model = parse("class A {\n +x : int\n +y : int\n +run()\n}")
        width, height = node_size(model.get_node("A"), "class")
        self.assertEqual(height, 26 + 3 * 20 + 8)
        self.assertGreaterEqual(width, 160)

    def test_entity_box_includes_key_separator(self) -> None:
        model = parse("entity User {\n* id : int\n--\nname : text\nmail : text\n}")
        layout = compute_layout(model)
        self.assertEqual(layout.boxes["User"].height, 26 + 3 * 20 + 8)
        keys_only = parse("entity Tag {\n* id : int\n}")
        self.assertEqual(node_size(keys_only.get_node("Tag"), "er")[1], 26 + 20)


class SequenceLayoutTests(unittest.TestCase):
    def test_rows_follow_message_order(self) -> None:
        model = parse("participant A\nparticipant B\nA -> B : one\nB --> A : two\nA -> A : self\nA -> B : three")
        layout = compute_layout(model)
        self.assertEqual(len(layout.rows), 4)
        self.assertEqual(list(layout.rows), sorted(layout.rows))
        self.assertEqual(len(set(layout.rows)), 4)
        self.assertLess(layout.boxes["A"].x, layout.boxes["B"].x)
        self.assertEqual(layout.boxes["A"].y, layout.boxes["B"].y)

    def test_self_message_is_a_loop(self) -> None:
        model = parse("participant A\nA -> A : self")
        layout = compute_layout(model)
        route = route_edge(model, layout, 0, model.edges[0])
        self.assertEqual(route.kind, "loop")

    def test_note_gets_its_own_row(self) -> None:
        model = parse("participant A\nA -> A : x\nnote over A : remember\nA -> A : y")
        layout = compute_layout(model)
        note = layout.boxes["note_1"]
        self.assertGreater(note.y, layout.rows[0])
        self.assertGreater(layout.rows[1], note.y)


class ActivityLayoutTests(unittest.TestCase):
    def test_markers_unplaced_and_chain_descends(self) -> None:
        model = parse("start\n:Step1;\nif (x) then (yes)\n:A;\nelse (no)\n:B;\nendif\nstop")
        layout = compute_layout(model)
        self.assertNotIn("a4", layout.boxes)
        placed = [layout.boxes[n.name].y for n in model.nodes if not n.is_marker]
        self.assertEqual(placed, sorted(placed))
        self.assertEqual(len(set(placed)), len(placed))

    def test_swimlanes_become_groups(self) -> None:
        model = parse("|Customer|\nstart\n:Order;\n|Shop|\n:Ship;\nstop")
        layout = compute_layout(model)
        self.assertIn("lane:Customer", layout.groups)
        self.assertIn("lane:Shop", layout.groups)
        self.assertLess(layout.boxes["a1"].x, layout.boxes["a2"].x)

    def test_partition_box_encloses_members(self) -> None:
        model = parse("start\npartition Setup {\n:A;\n}\nstop")
        layout = compute_layout(model)
        group = layout.groups["partition:Setup"]
        member = layout.boxes["a1"]
        self.assertLessEqual(group.x, member.x)
        self.assertGreaterEqual(group.right, member.right)

    def test_note_annotation(self) -> None:
        model = parse("start\n:A;\nnote right: hi\nstop")
        layout = compute_layout(model)
        self.assertIn("a1", layout.annotations)
        self.assertGreater(layout.annotations["a1"].x, layout.boxes["a1"].right)

    def test_loop_back_edge_route(self) -> None:
        model = parse("start\nwhile (more?)\n:work;\nendwhile\nstop")
        layout = compute_layout(model)
        index = next(i for i, e in enumerate(model.edges) if (e.source, e.target) == ("a2", "a1"))
        self.assertEqual(route_edge(model, layout, index, model.edges[index]).kind, "back")

    def test_action_width_follows_label(self) -> None:
        node = DiagramNode(name="a0", label="x" * 30, node_type="action")
        self.assertEqual(node_size(node, "activity"), (260, 40))


class MindmapLayoutTests(unittest.TestCase):
    def test_sides(self) -> None:
        model = parse("@startmindmap\n+ Root\n++ R\n-- L\n@endmindmap")
        layout = compute_layout(model)
        root = layout.boxes["m0"]
        self.assertGreater(layout.boxes["m1"].x, root.right)
        self.assertLess(layout.boxes["m2"].right, root.x)


class DrawableEdgeTests(unittest.TestCase):
    def test_edge_to_missing_node_is_dropped(self) -> None:
        model = DiagramModel(kind="class")
        model.add_node(DiagramNode(name="A", label="A", node_type="class"))
        model.add_edge(DiagramEdge(source="A", target="Ghost"))
        model.freeze()
        layout = compute_layout(model)
        self.assertEqual(drawable_edges(model, layout), [])

    def test_straight_route_is_clipped_to_boxes(self) -> None:
        model = parse("class A\nclass B\nA --> B")
        layout = compute_layout(model)
        route = route_edge(model, layout, 0, model.edges[0])
        self.assertEqual(route.kind, "straight")
        (x1, _), (x2, _) = route.points
        self.assertEqual(x1, layout.boxes["A"].right)
        self.assertEqual(x2, layout.boxes["B"].x)


if __name__ == "__main__":
    unittest.main()
