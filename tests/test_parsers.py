from __future__ import annotations

import sys
import unittest
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

from puml2drawio.converter import UnrecognizedSyntaxError, parse
from puml2drawio.plantuml_to_model import parse_member, resolve_color


def _edge(model, source, target):
    for edge in model.edges:
        if edge.source == source and edge.target == target:
            return edge
    raise AssertionError(f"no edge {source} -> {target}")


class ClassDiagramTests(unittest.TestCase):
    def test_two_classes_and_association(self) -> None:
        model = parse("@startuml\nclass A\nclass B\nA --> B : uses\n@enduml")
        self.assertEqual(model.kind, "class")
        self.assertEqual([n.name for n in model.nodes], ["A", "B"])
        self.assertEqual(len(model.edges), 1)
        edge = model.edges[0]
        self.assertEqual((edge.source, edge.target, edge.rel_type, edge.label), ("A", "B", "association", "uses"))
        self.assertEqual(model.diagnostics, [])

    def test_members_and_relations(self) -> None:
        text = "\n".join([
            "class User <<entity>> {",
            "  - id : int",
            "  + {static} count : int",
            "  + getName() : String",
            "  {abstract} + save()",
            "  --",
            "}",
            "interface Repo",
            "abstract class Base",
            "enum Color {",
            "  RED",
            "  GREEN",
            "}",
            "Base <|-- User",
            "Repo <|.. User",
            'User "1" *-- "many" Order : owns',
            "Car o-- Wheel",
            "A ..> B",
        ])
        model = parse(text)
        self.assertEqual(model.kind, "class")
        self.assertEqual(model.diagnostics, [])

        user = model.get_node("User")
        self.assertEqual(user.stereotype, "entity")
        self.assertEqual([(m.visibility, m.name, m.type) for m in user.attributes],
                         [("-", "id", "int"), ("+", "count", "int")])
        self.assertTrue(user.attributes[1].is_static)
        self.assertEqual([m.name for m in user.methods], ["getName()", "save()"])
        self.assertEqual(user.methods[0].type, "String")
        self.assertTrue(user.methods[1].is_abstract)

        self.assertEqual(model.get_node("Repo").node_type, "interface")
        self.assertEqual(model.get_node("Base").node_type, "abstract")
        color = model.get_node("Color")
        self.assertEqual(color.node_type, "enum")
        self.assertEqual([m.display() for m in color.attributes], ["RED", "GREEN"])

        self.assertEqual(_edge(model, "User", "Base").rel_type, "extends")
        self.assertEqual(_edge(model, "User", "Repo").rel_type, "implements")
        owns = _edge(model, "User", "Order")
        self.assertEqual(owns.rel_type, "composition")
        self.assertEqual(owns.cardinality, "1:many")
        self.assertEqual(owns.label, "owns")
        self.assertEqual(_edge(model, "Car", "Wheel").rel_type, "aggregation")
        dependency = _edge(model, "A", "B")
        self.assertEqual(dependency.rel_type, "dependency")
        self.assertEqual(dependency.style, "dashed")
        # relations declare unknown names implicitly
        self.assertEqual(model.get_node("Order").node_type, "class")

    def test_reversed_composition_keeps_whole_as_source(self) -> None:
        model = parse("class Wheel\nclass Car\nWheel --* Car")
        edge = model.edges[0]
        self.assertEqual((edge.source, edge.target, edge.rel_type), ("Car", "Wheel", "composition"))

    def test_direction_hints_and_colors_are_stripped(self) -> None:
        model = parse("class A\nclass B\nA -up-> B\nA -[#red]-> B")
        self.assertEqual([e.rel_type for e in model.edges], ["association", "association"])

    def test_quoted_label_alias(self) -> None:
        model = parse('class "Long Name" as LN\nLN --> Other')
        self.assertEqual(model.get_node("LN").label, "Long Name")
        self.assertEqual(model.edges[0].source, "LN")

    def test_note_anchors_to_class(self) -> None:
        model = parse("class A\nnote left of A : important")
        note = [n for n in model.nodes if n.node_type == "note"][0]
        self.assertEqual(note.label, "important")
        self.assertEqual(note.parent, "A")
        anchor = _edge(model, note.name, "A")
        self.assertEqual((anchor.rel_type, anchor.style), ("anchor", "dashed"))

    def test_multiline_note(self) -> None:
        model = parse("class A\nnote right of A\nfirst\nsecond\nend note")
        note = [n for n in model.nodes if n.node_type == "note"][0]
        self.assertEqual(note.label, "first\nsecond")

    def test_unmatched_lines_become_diagnostics(self) -> None:
        model = parse("class A\nthis is garbage ??")
        self.assertEqual(model.diagnostics, ["line 2: this is garbage ??"])

    def test_strict_mode_raises(self) -> None:
        with self.assertRaises(UnrecognizedSyntaxError) as ctx:
            parse("class A\nthis is garbage ??", strict=True)
        self.assertEqual(ctx.exception.diagnostics, ["line 2: this is garbage ??"])

    def test_parse_member(self) -> None:
        member = parse_member("# items : List<Item>")
        self.assertEqual((member.visibility, member.name, member.type), ("#", "items", "List<Item>"))
        self.assertFalse(member.is_method)
        method = parse_member("~ run(a: int) : bool")
        self.assertTrue(method.is_method)
        self.assertEqual((method.name, method.type), ("run(a: int)", "bool"))
        self.assertEqual(parse_member("plain").visibility, "+")


class SequenceDiagramTests(unittest.TestCase):
    def test_participants_messages_returns_and_notes(self) -> None:
        text = "\n".join([
            "participant Alice",
            'participant "Bob Server" as Bob',
            "Alice -> Bob : request",
            "Bob --> Alice : response",
            "Alice -> Alice : think",
            "Alice -> Bob : again",
            "return done",
            "note over Bob : a note",
            "alt success",
            "end",
            "autonumber",
        ])
        model = parse(text)
        self.assertEqual(model.kind, "sequence")
        self.assertEqual(model.diagnostics, [])
        self.assertEqual(model.get_node("Bob").label, "Bob Server")

        messages = model.edges
        self.assertEqual([(e.source, e.target) for e in messages],
                         [("Alice", "Bob"), ("Bob", "Alice"), ("Alice", "Alice"), ("Alice", "Bob"), ("Bob", "Alice")])
        self.assertEqual([e.sequence_order for e in messages], [1, 2, 3, 4, 5])
        self.assertEqual(messages[1].style, "dashed")
        self.assertEqual(messages[4].label, "done")
        self.assertEqual(messages[4].style, "dashed")

        note = model.get_node("note_1")
        self.assertEqual((note.parent, note.side, note.order), ("Bob", "over", 6))

    def test_reverse_arrow_and_actor(self) -> None:
        model = parse("actor User\nparticipant API\nUser <- API : hi")
        self.assertTrue(model.get_node("User").is_actor)
        edge = model.edges[0]
        self.assertEqual((edge.source, edge.target), ("API", "User"))

    def test_undeclared_participants_are_created(self) -> None:
        model = parse("Alice -> Bob : hi")
        self.assertEqual([n.name for n in model.nodes], ["Alice", "Bob"])


class StateDiagramTests(unittest.TestCase):
    def test_states_composites_and_pseudo_states(self) -> None:
        text = "\n".join([
            "[*] --> Idle",
            "state Idle : waiting",
            "state Busy {",
            "  [*] --> Working",
            "  Working --> [*]",
            "}",
            "Idle --> Busy : start",
            "Busy --> [*]",
            "state Check <<choice>>",
        ])
        model = parse(text)
        self.assertEqual(model.kind, "state")
        self.assertEqual(model.diagnostics, [])
        self.assertEqual(model.get_node("[*].start").node_type, "initial")
        self.assertEqual(model.get_node("[*].end").node_type, "final")
        self.assertEqual(model.get_node("Busy.[*].start").parent, "Busy")
        self.assertEqual(model.get_node("Working").parent, "Busy")
        self.assertEqual(model.get_node("Idle").description, ["waiting"])
        self.assertEqual(model.get_node("Check").node_type, "choice")
        self.assertEqual(len(model.edges), 5)
        self.assertTrue(all(e.rel_type == "transition" for e in model.edges))
        self.assertEqual(_edge(model, "Idle", "Busy").label, "start")


class MindmapTests(unittest.TestCase):
    def test_plus_minus_sides(self) -> None:
        model = parse("@startmindmap\n+ Root\n++ R1\n+++ R1a\n-- L1\n--- L1a\n@endmindmap")
        self.assertEqual(model.kind, "mindmap")
        labels = {n.label: n for n in model.nodes}
        self.assertEqual(labels["Root"].node_type, "root")
        self.assertEqual(labels["R1a"].side, "right")
        self.assertEqual(labels["L1"].side, "left")
        self.assertEqual(labels["L1"].parent, labels["Root"].name)
        self.assertEqual(labels["L1a"].parent, labels["L1"].name)
        self.assertEqual(len(model.edges), 4)
        self.assertTrue(all(e.rel_type == "branch" for e in model.edges))

    def test_star_sides_inherit_and_switch(self) -> None:
        text = "@startmindmap\n* Root\n** A\n*** A1\nleft side\n** B\n*** B1\n** :line one\nline two;\n@endmindmap"
        model = parse(text)
        labels = {n.label: n for n in model.nodes}
        self.assertEqual(labels["A"].side, "right")
        self.assertEqual(labels["A1"].side, "right")
        self.assertEqual(labels["B"].side, "left")
        self.assertEqual(labels["B1"].side, "left")
        self.assertIn("line one\nline two", labels)
        self.assertEqual([n.name for n in model.nodes][:2], ["m0", "m1"])


class EntityRelationshipTests(unittest.TestCase):
    def test_entities_and_crows_foot(self) -> None:
        text = "\n".join([
            "@startuml",
            "entity User {",
            "  * id : int",
            "  --",
            "  name : text",
            "}",
            "entity Order {",
            "  * id : int <<PK>>",
            "  user_id : int <<FK>>",
            "}",
            "entity Product {",
            "  * sku : text",
            "}",
            "User ||--o{ Order : places",
            "@enduml",
        ])
        model = parse(text)
        self.assertEqual(model.kind, "er")
        self.assertEqual(model.diagnostics, [])
        self.assertEqual([n.name for n in model.nodes], ["User", "Order", "Product"])

        user = model.get_node("User")
        self.assertEqual([(c.name, c.type) for c in user.columns], [("id", "int"), ("name", "text")])
        self.assertTrue(user.columns[0].primary_key)
        self.assertTrue(user.columns[0].mandatory)
        self.assertFalse(user.columns[1].primary_key)
        order = model.get_node("Order")
        self.assertTrue(order.columns[0].primary_key)
        self.assertTrue(order.columns[1].foreign_key)

        self.assertEqual(len(model.edges), 1)
        edge = model.edges[0]
        self.assertEqual((edge.source, edge.target, edge.rel_type), ("User", "Order", "relationship"))
        self.assertEqual(edge.cardinality, "1:0..*")
        self.assertEqual(edge.label, "places")

    def test_dotted_relationship_is_dashed(self) -> None:
        model = parse("entity A\nentity B\nA }|..|{ B")
        edge = model.edges[0]
        self.assertEqual((edge.style, edge.cardinality), ("dashed", "1..*:1..*"))


class DeploymentTests(unittest.TestCase):
    def test_archetypes_containers_and_shorthands(self) -> None:
        text = "\n".join([
            'node "Web Server" as web {',
            "  [Frontend] as fe",
            "}",
            "database DB",
            "cloud Internet",
            "Internet --> web : https",
            "fe ..> DB",
            "[Frontend] --> [API]",
            "() HTTP",
        ])
        model = parse(text)
        self.assertEqual(model.kind, "deployment")
        self.assertEqual(model.diagnostics, [])
        self.assertEqual([n.name for n in model.nodes], ["web", "fe", "DB", "Internet", "API", "HTTP"])
        self.assertEqual(model.get_node("web").label, "Web Server")
        self.assertEqual(model.get_node("fe").parent, "web")
        self.assertEqual(model.get_node("DB").node_type, "database")
        self.assertEqual(model.get_node("HTTP").node_type, "interface")
        self.assertEqual(_edge(model, "web", "fe").rel_type, "containment")
        self.assertEqual(_edge(model, "Internet", "web").label, "https")
        self.assertEqual(_edge(model, "fe", "DB").rel_type, "dependency")
        self.assertEqual(_edge(model, "fe", "API").rel_type, "association")

    def test_arrowless_link(self) -> None:
        model = parse("node A\nnode B\nA -- B")
        self.assertFalse(model.edges[0].arrow_end)


class UseCaseTests(unittest.TestCase):
    def test_actors_usecases_and_relations(self) -> None:
        text = "\n".join([
            "actor User",
            ":Admin: as A",
            'usecase "Place Order" as UC1',
            "(Login)",
            "rectangle Shop {",
            "  (Checkout) as CO",
            "}",
            "User --> (Login)",
            "User --> UC1",
            "A --> CO",
            "CO ..> (Login) : <<include>>",
            "(Pay) .> CO : <<extend>>",
            "Guest --|> User",
        ])
        model = parse(text)
        self.assertEqual(model.kind, "usecase")
        self.assertEqual(model.diagnostics, [])
        self.assertEqual(model.get_node("A").label, "Admin")
        self.assertTrue(model.get_node("A").is_actor)
        self.assertEqual(model.get_node("UC1").label, "Place Order")
        self.assertEqual(model.get_node("CO").node_type, "usecase")
        self.assertEqual(_edge(model, "User", "Login").rel_type, "association")
        self.assertEqual(_edge(model, "CO", "Login").rel_type, "include")
        self.assertEqual(_edge(model, "Pay", "CO").rel_type, "extend")
        self.assertEqual(_edge(model, "Guest", "User").rel_type, "extends")
        self.assertTrue(model.get_node("Guest").is_actor)
        self.assertEqual(len(model.nodes), 7)


class ColorTests(unittest.TestCase):
    def test_resolve_color(self) -> None:
        self.assertEqual(resolve_color("#ff0000"), "#FF0000")
        self.assertEqual(resolve_color("#pink"), "#FFC0CB")
        self.assertEqual(resolve_color("LightBlue"), "#ADD8E6")
        self.assertIsNone(resolve_color("#notacolor"))
        self.assertIsNone(resolve_color(None))


if __name__ == "__main__":
    unittest.main()
