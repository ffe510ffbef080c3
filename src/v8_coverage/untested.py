"""Zero-count coverage for included files that no test loaded.

Without this, a compiled file that was never requested by the browser would
be missing from the report instead of showing up at 0%. The script is
parsed with esprima to find the same function and block ranges V8 would
report, all with a count of zero, and fed through the normal converter.
"""

import os
import sys

import esprima
from esprima.error_handler import Error as EsprimaError

from v8_coverage.convert import convert_functions
from v8_coverage.sourcemaps import PositionMap

FUNCTION_NODES = ("FunctionDeclaration", "FunctionExpression", "ArrowFunctionExpression")


def _utf16_units(source):
    """UTF-16 offset of every str index (plus the end), or None if they coincide."""
    if all(ord(char) <= 0xFFFF for char in source):
        return None
    units = [0]
    for char in source:
        units.append(units[-1] + (2 if ord(char) > 0xFFFF else 1))
    return units


def _zero_range(node, units):
    # esprima ranges are str indices, V8 ranges are UTF-16 offsets
    start, end = node.range
    if units is not None:
        start, end = units[start], units[end]
    return {"startOffset": start, "endOffset": end, "count": 0}


def _parse(source):
    nodes = []

    def collect(node, metadata):
        nodes.append(node)

    try:
        esprima.parseModule(source, {"range": True}, collect)
    except EsprimaError:
        nodes.clear()
        esprima.parseScript(source, {"range": True}, collect)
    return nodes


def _inferred_names(nodes):
    """Names V8 would give anonymous functions from their binding."""
    names = {}
    for node in nodes:
        if node.type == "VariableDeclarator" and node.init is not None:
            target, binding = node.init, node.id
        elif node.type in ("MethodDefinition", "Property"):
            target, binding = node.value, node.key
        elif node.type == "AssignmentExpression":
            target, binding = node.right, node.left
        else:
            continue
        name = getattr(binding, "name", None)
        if name and getattr(target, "type", None) in FUNCTION_NODES:
            names[id(target)] = name
    return names


def synthesize_functions(source):
    """Build a V8-shaped function list with every range at count 0.

    Falls back to the script body alone when the source cannot be parsed.
    """
    functions = [{
        "functionName": "",
        "isBlockCoverage": True,
        "ranges": [{"startOffset": 0, "endOffset": len(source), "count": 0}],
    }]
    units = _utf16_units(source)
    if units is not None:
        functions[0]["ranges"][0]["endOffset"] = units[-1]
    try:
        nodes = _parse(source)
    except EsprimaError as e:
        print(f"Warning: cannot parse script for function/branch detection: {e}", file=sys.stderr)
        return functions

    names = _inferred_names(nodes)
    blocks = functions[0]["ranges"]
    for node in nodes:
        if node.type in FUNCTION_NODES:
            ident = getattr(node, "id", None)
            functions.append({
                "functionName": getattr(ident, "name", None) or names.get(id(node), ""),
                "isBlockCoverage": True,
                "ranges": [_zero_range(node, units)],
            })
        elif node.type in ("IfStatement", "ConditionalExpression"):
            blocks.append(_zero_range(node.consequent, units))
            if node.alternate is not None:
                blocks.append(_zero_range(node.alternate, units))
        elif node.type == "LogicalExpression":
            blocks.append(_zero_range(node.right, units))
        elif node.type == "SwitchCase":
            blocks.append(_zero_range(node, units))
    return functions


def original_source_path(compiled_path, config):
    """Map a compiled file path to its original source path.

    The out_dir prefix is swapped for src_dir and the out_ext suffix for
    src_ext.
    """
    path = os.path.abspath(compiled_path)
    out_dir = os.path.abspath(config.out_dir)
    if path.startswith(out_dir + os.sep):
        path = os.path.join(os.path.abspath(config.src_dir), os.path.relpath(path, out_dir))
    elif config.out_dir:
        path = path.replace(config.out_dir, config.src_dir, 1)
    if config.out_ext and path.endswith(config.out_ext):
        path = path[: -len(config.out_ext)] + config.src_ext
    return path


def untested_file_coverage(compiled_path, config):
    """Zero-count FileCoverage entries for a compiled file with no samples."""
    with open(compiled_path, encoding="utf-8") as f:
        source = f.read()

    original = original_source_path(compiled_path, config)
    position_map = PositionMap.from_script(os.path.abspath(compiled_path), source, original)
    results = convert_functions(synthesize_functions(source), position_map)

    file_coverage = results.get(original)
    if file_coverage is not None and file_coverage.source is None and os.path.isfile(original):
        with open(original, encoding="utf-8") as f:
            file_coverage.source = f.read()
    return results
