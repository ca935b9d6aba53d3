#!/usr/bin/env python3
"""
PlantUML → draw.io converter

Public entry points:
  parse(text, strict=False)           -> frozen DiagramModel
  render(model, compact, compress)    -> {"xml": ..., "preview": ...}
  convert(text, ...)                  -> ConversionResult

Pipeline: preprocess → detect kind → per-kind parser → freeze →
compute_layout (once) → draw.io XML + SVG preview from the same Layout.

Usage:
    puml2drawio -i diagram.puml -o diagram.drawio --svg diagram.svg
    cat diagram.puml | puml2drawio --stdin --compress > diagram.drawio
"""

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from puml2drawio.activity_flow import parse_activity
from puml2drawio.diagram_model import DiagramModel, save_model, summarize
from puml2drawio.layout import Layout, compute_layout
from puml2drawio.model_to_drawio import model_to_drawio
from puml2drawio.model_to_svg import model_to_svg
from puml2drawio.plantuml_to_model import KIND_PARSERS, detect_diagram_type, preprocess

NO_ELEMENTS_MESSAGE = "No valid elements found in PlantUML code"


class ConversionError(Exception):
    """Raised when PlantUML text cannot be converted."""


class NoElementsFoundError(ConversionError):
    """Raised when the input yields no diagram elements."""

    def __init__(self, message: str = NO_ELEMENTS_MESSAGE):
        super().__init__(message)


class UnrecognizedSyntaxError(ConversionError):
    """Raised in strict mode when some lines matched no grammar rule."""

    def __init__(self, diagnostics: List[str]):
        self.diagnostics = list(diagnostics)
        preview = "; ".join(self.diagnostics[:3])
        more = f" (+{len(self.diagnostics) - 3} more)" if len(self.diagnostics) > 3 else ""
        super().__init__(f"Unrecognized PlantUML syntax: {preview}{more}")


@dataclass
class ConversionResult:
    model: DiagramModel
    layout: Layout
    xml: str
    preview: str


def parse(text: str, strict: bool = False) -> DiagramModel:
    """Parse PlantUML text into a frozen DiagramModel.

    Unrecognized lines are kept in model.diagnostics; with strict=True they
    raise UnrecognizedSyntaxError instead. Empty input yields an empty model.
    """
    try:
        lines, title = preprocess(text or "")
        model = DiagramModel(kind=detect_diagram_type(text or ""), title=title)
        if model.kind == 'activity':
            parse_activity(lines, model)
        else:
            KIND_PARSERS[model.kind](lines, model)
        model.freeze()
    except Exception as exc:
        raise ConversionError(f"Conversion failed: {exc}") from exc

    if strict and model.diagnostics:
        raise UnrecognizedSyntaxError(model.diagnostics)
    return model


def render(model: DiagramModel, compact: bool = False, compress: bool = False,
           modified: Optional[str] = None, layout: Optional[Layout] = None) -> Dict[str, str]:
    """Render a model to draw.io XML and an SVG preview sharing one layout."""
    if model.is_empty():
        raise NoElementsFoundError()
    try:
        layout = layout or compute_layout(model)
        return {
            "xml": model_to_drawio(model, layout, compact=compact, compress=compress, modified=modified),
            "preview": model_to_svg(model, layout),
        }
    except Exception as exc:
        raise ConversionError(f"Conversion failed: {exc}") from exc


def convert(text: str, strict: bool = False, compact: bool = False,
            compress: bool = False, modified: Optional[str] = None) -> ConversionResult:
    """Parse, lay out and render in one call."""
    model = parse(text, strict=strict)
    if model.is_empty():
        raise NoElementsFoundError()
    layout = compute_layout(model)
    outputs = render(model, compact=compact, compress=compress, modified=modified, layout=layout)
    return ConversionResult(model=model, layout=layout, xml=outputs["xml"], preview=outputs["preview"])


# ─── CLI ──────────────────────────────────────────────────────────

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Convert PlantUML diagrams to draw.io XML")
    parser.add_argument("--input", "-i", help="Input .puml file")
    parser.add_argument("--stdin", action="store_true", help="Read PlantUML from stdin")
    parser.add_argument("--output", "-o", help="Output .drawio file (default: stdout)")
    parser.add_argument("--svg", help="Also write the SVG preview to this file")
    parser.add_argument("--model", help="Also write the diagram model JSON to this file")
    parser.add_argument("--compact", action="store_true", help="Single-line XML")
    parser.add_argument("--compress", action="store_true", help="Compress the diagram payload (implies --compact)")
    parser.add_argument("--strict", action="store_true", help="Fail on unrecognized lines")
    args = parser.parse_args(argv)

    if args.stdin:
        content = sys.stdin.read()
    elif args.input:
        input_path = Path(args.input)
        if not input_path.exists():
            print(f"Error: Input file not found: {input_path}", file=sys.stderr)
            return 1
        content = input_path.read_text(encoding="utf-8", errors="ignore")
    else:
        parser.error("Either --input or --stdin is required")
        return 1

    if not content.strip():
        print("Error: Please enter PlantUML code", file=sys.stderr)
        return 1

    try:
        result = convert(content, strict=args.strict, compact=args.compact, compress=args.compress)
    except UnrecognizedSyntaxError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        for line in exc.diagnostics:
            print(f"  {line}", file=sys.stderr)
        return 1
    except ConversionError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if args.output:
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(result.xml, encoding="utf-8")
        print(f"  Written: {out}", file=sys.stderr)
    else:
        sys.stdout.write(result.xml)
        if not result.xml.endswith("\n"):
            sys.stdout.write("\n")

    if args.svg:
        Path(args.svg).write_text(result.preview, encoding="utf-8")
        print(f"  Preview: {args.svg}", file=sys.stderr)
    if args.model:
        save_model(result.model, args.model)
        print(f"  Model: {args.model}", file=sys.stderr)

    print(f"  Converted: {summarize(result.model)}", file=sys.stderr)
    for line in result.model.diagnostics:
        print(f"  Skipped {line}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
