"""PlantUML to draw.io conversion: parse, lay out, render."""

from puml2drawio.converter import (
    ConversionError,
    ConversionResult,
    NoElementsFoundError,
    UnrecognizedSyntaxError,
    convert,
    parse,
    render,
)
from puml2drawio.plantuml_to_model import detect_diagram_type

__all__ = [
    "ConversionError",
    "ConversionResult",
    "NoElementsFoundError",
    "UnrecognizedSyntaxError",
    "convert",
    "detect_diagram_type",
    "parse",
    "render",
]
