"""Structural entity extraction from a tree-sitter syntax tree.

Walks every named node of a TypeScript / JavaScript tree and turns the
retrievable ones into :class:`~codecontext.models.CodeEntity` records:

- **function**: declarations, function expressions and arrow functions
  that are bound to a name (directly or through ``const x = ...``).
  Anonymous callbacks are not retrievable units and are dropped.
- **class** / **interface** / **type**: with member and field name lists.
- **method**: qualified as ``Owner.method``; the owner is the nearest
  enclosing class.  Arrow functions assigned to class fields count too.
- **variable**: module-level bindings, plus bindings inside functions
  whose initialiser looks like React state or a client / store factory.

The extractor never parses text.  It only reads node kinds, byte ranges
and named children, slicing the original source by byte offsets.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, Iterator, List, Optional

from .errors import ExtractionError
from .models import CodeEntity, Parameter, estimate_tokens

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Node-kind tables
# ---------------------------------------------------------------------------

FUNCTION_NODES = {
    "function_declaration",
    "generator_function_declaration",
    "function_expression",
    "function",
    "generator_function",
    "arrow_function",
}

CLASS_NODES = {"class_declaration", "abstract_class_declaration"}

# Ancestors that make a variable "local"
FUNCTION_SCOPES = FUNCTION_NODES | {"method_definition"}

OWNER_NODES = CLASS_NODES | {"class"}

LOOP_NODES = {"for_statement", "for_in_statement", "for_of_statement"}

BRANCH_NODES = {
    "if_statement",
    "while_statement",
    "do_statement",
    "for_statement",
    "for_in_statement",
    "for_of_statement",
    "switch_case",
    "catch_clause",
    "ternary_expression",
    "conditional_expression",
}

LOGICAL_OPERATORS = {"&&", "||", "??"}

PARAMETER_NODES = {"required_parameter", "optional_parameter", "rest_parameter"}

FIELD_NODES = {"public_field_definition", "field_definition"}

# Statement wrappers whose leading comment documents the inner entity
_DOC_WRAPPERS = {
    "variable_declarator",
    "lexical_declaration",
    "variable_declaration",
    "export_statement",
    "public_field_definition",
    "field_definition",
}

HOOK_PATTERNS = (
    "useState(",
    "useRef(",
    "useMemo(",
    "useCallback(",
    "useContext(",
    "useReducer(",
    "useEffect",
    "useLayoutEffect",
)

FACTORY_PATTERNS = (
    "createClient(",
    "createContext(",
    "createStore(",
    "express(",
    "Router(",
)

_CALLEE_RE = re.compile(r"^[A-Za-z_$#][\w$]*$")
_MEMBER_SPLIT_RE = re.compile(r"\?\.|\.")


# ===================================================================
# Public API
# ===================================================================

def extract_entities(tree: Any, file_path: str, source: str) -> List[CodeEntity]:
    """Extract every retrievable entity from *tree*.

    Args:
        tree: A tree-sitter ``Tree`` (or its root node).
        file_path: Repository-relative path, used in ids and results.
        source: The exact text the tree was parsed from.

    Returns:
        Entities in document order.

    Raises:
        ExtractionError: *tree* has no walkable root node.
    """
    root = getattr(tree, "root_node", None)
    if root is None and hasattr(tree, "children") and hasattr(tree, "type"):
        root = tree
    if root is None:
        raise ExtractionError("syntax tree has no root node", file_path)

    src = source.encode("utf-8")
    entities: List[CodeEntity] = []
    for node in _walk(root):
        if not node.is_named:
            continue
        handler = _HANDLERS.get(node.type)
        if handler is None:
            continue
        entity = handler(node, file_path, src)
        if entity is not None:
            entities.append(entity)

    logger.debug("Extracted %d entities from %s", len(entities), file_path)
    return entities


# ===================================================================
# Per-kind handlers
# ===================================================================

def _extract_function(node: Any, file_path: str, src: bytes) -> Optional[CodeEntity]:
    parent = node.parent
    if parent is not None and parent.type in FIELD_NODES:
        field_name = _field_name(parent, src)
        if not field_name:
            return None
        return _make_callable(
            node, file_path, src,
            name=f"{_owner_name(node, src)}.{field_name}",
            bare_name=field_name,
            kind="method",
        )

    name = _function_name(node, src)
    if not name:
        return None
    return _make_callable(node, file_path, src, name=name, bare_name=name, kind="function")


def _extract_method(node: Any, file_path: str, src: bytes) -> Optional[CodeEntity]:
    name_node = node.child_by_field_name("name")
    if name_node is None:
        return None
    bare = _text(name_node, src)
    return _make_callable(
        node, file_path, src,
        name=f"{_owner_name(node, src)}.{bare}",
        bare_name=bare,
        kind="method",
    )


def _extract_class(node: Any, file_path: str, src: bytes) -> Optional[CodeEntity]:
    name_node = node.child_by_field_name("name")
    if name_node is None:
        return None
    name = _text(name_node, src)

    members: List[str] = []
    fields: List[str] = []
    body = node.child_by_field_name("body")
    if body is not None:
        for child in body.named_children:
            if child.type == "method_definition":
                member = child.child_by_field_name("name")
                if member is not None:
                    members.append(_text(member, src))
            elif child.type in FIELD_NODES:
                field_name = _field_name(child, src)
                if field_name:
                    fields.append(field_name)

    return _make_entity(
        node, file_path, src,
        name=name,
        kind="class",
        signature=f"class {name}",
        complexity=_complexity(node, src),
        members=members,
        fields=fields,
    )


def _extract_interface(node: Any, file_path: str, src: bytes) -> Optional[CodeEntity]:
    name_node = node.child_by_field_name("name")
    if name_node is None:
        return None
    name = _text(name_node, src)

    members: List[str] = []
    fields: List[str] = []
    body = node.child_by_field_name("body")
    if body is not None:
        for child in body.named_children:
            member = child.child_by_field_name("name")
            if member is None:
                continue
            if child.type == "property_signature":
                fields.append(_text(member, src))
            elif child.type == "method_signature":
                members.append(_text(member, src))

    return _make_entity(
        node, file_path, src,
        name=name,
        kind="interface",
        signature=f"interface {name}",
        members=members,
        fields=fields,
    )


def _extract_type_alias(node: Any, file_path: str, src: bytes) -> Optional[CodeEntity]:
    name_node = node.child_by_field_name("name")
    if name_node is None:
        return None
    name = _text(name_node, src)
    return _make_entity(node, file_path, src, name=name, kind="type", signature=f"type {name}")


def _extract_variable(node: Any, file_path: str, src: bytes) -> Optional[CodeEntity]:
    parent = node.parent
    if parent is not None and parent.type in LOOP_NODES:
        return None

    declarator = next(
        (c for c in node.named_children if c.type == "variable_declarator"), None
    )
    if declarator is None:
        return None
    name_node = declarator.child_by_field_name("name")
    if name_node is None:
        return None
    # destructuring patterns keep their (whitespace-collapsed) source text
    name = " ".join(_text(name_node, src).split())

    value = declarator.child_by_field_name("value")
    if value is not None and value.type in FUNCTION_NODES:
        return None
    value_text = _text(value, src) if value is not None else ""

    if _has_ancestor(node, FUNCTION_SCOPES) and not _is_notable_initializer(value_text):
        return None

    type_node = declarator.child_by_field_name("type")
    var_type = _strip_annotation(_text(type_node, src)) if type_node is not None else None

    keyword = "const"
    if node.children and node.children[0].type in ("const", "let", "var"):
        keyword = node.children[0].type
    signature = f"{keyword} {name}" + (f": {var_type}" if var_type else "")

    return _make_entity(
        node, file_path, src,
        name=name,
        kind="variable",
        signature=signature,
        calls=_collect_calls(node, src),
        return_type=var_type,
    )


_HANDLERS: Dict[str, Callable[[Any, str, bytes], Optional[CodeEntity]]] = {
    **{kind: _extract_function for kind in FUNCTION_NODES},
    **{kind: _extract_class for kind in CLASS_NODES},
    "method_definition": _extract_method,
    "interface_declaration": _extract_interface,
    "type_alias_declaration": _extract_type_alias,
    "lexical_declaration": _extract_variable,
    "variable_declaration": _extract_variable,
}


# ===================================================================
# Entity construction
# ===================================================================

def _make_callable(
    node: Any,
    file_path: str,
    src: bytes,
    name: str,
    bare_name: str,
    kind: str,
) -> CodeEntity:
    parameters = _parameters(node, src)
    return_type = _return_type(node, src)
    return _make_entity(
        node, file_path, src,
        name=name,
        kind=kind,
        signature=build_signature(bare_name, parameters, return_type),
        complexity=_complexity(node, src),
        calls=_collect_calls(node, src),
        parameters=parameters,
        return_type=return_type,
    )


def _make_entity(node: Any, file_path: str, src: bytes, name: str, kind: str,
                 signature: str, **extra: Any) -> CodeEntity:
    start_line = node.start_point[0] + 1
    end_line = max(node.end_point[0] + 1, start_line)
    text = _text(node, src)
    return CodeEntity(
        id=CodeEntity.make_id(file_path, name, start_line),
        name=name,
        kind=kind,
        file=file_path,
        start_line=start_line,
        end_line=end_line,
        source=text,
        signature=signature,
        doc=extract_leading_doc(src, _doc_anchor(node).start_byte),
        token_estimate=estimate_tokens(text),
        **extra,
    )


def build_signature(name: str, parameters: List[Parameter], return_type: Optional[str]) -> str:
    """Render ``name(a?: T = d, ...): R`` from extracted parts."""
    rendered: List[str] = []
    for param in parameters:
        part = param.name + ("?" if param.optional else "")
        if param.type:
            part += f": {param.type}"
        if param.default:
            part += f" = {param.default}"
        rendered.append(part)
    signature = f"{name}({', '.join(rendered)})"
    if return_type:
        signature += f": {return_type}"
    return signature


# ===================================================================
# Field helpers
# ===================================================================

def _function_name(node: Any, src: bytes) -> Optional[str]:
    name_node = node.child_by_field_name("name")
    if name_node is not None:
        return _text(name_node, src)
    parent = node.parent
    if parent is not None and parent.type == "variable_declarator":
        binding = parent.child_by_field_name("name")
        if binding is not None and binding.type == "identifier":
            return _text(binding, src)
    return None


def _field_name(node: Any, src: bytes) -> Optional[str]:
    name_node = node.child_by_field_name("name")
    if name_node is None:
        name_node = node.child_by_field_name("property")
    return _text(name_node, src) if name_node is not None else None


def _owner_name(node: Any, src: bytes) -> str:
    current = node.parent
    while current is not None:
        if current.type in OWNER_NODES:
            name_node = current.child_by_field_name("name")
            if name_node is not None:
                return _text(name_node, src)
        current = current.parent
    return "Unknown"


def _parameters(node: Any, src: bytes) -> List[Parameter]:
    params_node = node.child_by_field_name("parameters")
    if params_node is None:
        # single bare arrow parameter: x => ...
        single = node.child_by_field_name("parameter")
        return [Parameter(name=_text(single, src))] if single is not None else []

    params: List[Parameter] = []
    for child in params_node.named_children:
        if child.type not in PARAMETER_NODES:
            continue
        name_node = child.child_by_field_name("pattern")
        if name_node is None:
            name_node = child.child_by_field_name("name")
        type_node = child.child_by_field_name("type")
        value_node = child.child_by_field_name("value")
        params.append(Parameter(
            name=_text(name_node, src) if name_node is not None else "unknown",
            type=_strip_annotation(_text(type_node, src)) if type_node is not None else None,
            optional=child.type == "optional_parameter",
            default=_text(value_node, src) if value_node is not None else None,
        ))
    return params


def _return_type(node: Any, src: bytes) -> Optional[str]:
    type_node = node.child_by_field_name("return_type")
    if type_node is None:
        return None
    return _strip_annotation(_text(type_node, src)) or None


def _strip_annotation(text: str) -> str:
    return text.strip().lstrip(":").strip()


# ===================================================================
# Calls and complexity
# ===================================================================

def _collect_calls(node: Any, src: bytes) -> List[str]:
    """Bare callee names of every call in *node*'s subtree, first-seen order."""
    calls: Dict[str, None] = {}
    for child in _walk(node):
        if child.type != "call_expression":
            continue
        func = child.child_by_field_name("function")
        if func is None:
            continue
        name = callee_name(_text(func, src))
        if name and name not in calls:
            calls[name] = None
    return list(calls)


def callee_name(call_text: str) -> Optional[str]:
    """Strip member-access and optional-chaining prefixes from a callee.

    ``this.repo.save`` -> ``save``; ``user?.greet`` -> ``greet``.  Returns
    ``None`` for computed callees such as ``(a || b)`` or ``fns[0]``.
    """
    name = _MEMBER_SPLIT_RE.split(call_text.strip())[-1].strip().rstrip("!")
    return name if _CALLEE_RE.match(name) else None


def _complexity(node: Any, src: bytes) -> int:
    complexity = 1
    for child in _walk(node):
        if child.type in BRANCH_NODES:
            complexity += 1
        elif child.type == "binary_expression":
            operator = child.child_by_field_name("operator")
            if operator is not None and _text(operator, src) in LOGICAL_OPERATORS:
                complexity += 1
    return complexity


# ===================================================================
# Doc comments
# ===================================================================

def _doc_anchor(node: Any) -> Any:
    anchor = node
    parent = node.parent
    while parent is not None and parent.type in _DOC_WRAPPERS:
        anchor = parent
        parent = parent.parent
    return anchor


def extract_leading_doc(src: bytes, start_byte: int) -> Optional[str]:
    """Return the comment block directly above *start_byte*, cleaned.

    Scans backwards over contiguous ``/** ... */`` and ``//`` lines,
    skipping blank lines only between the comment and the declaration.
    """
    before = src[:start_byte].decode("utf-8", errors="replace")
    collected: List[str] = []
    for raw in reversed(before.split("\n")):
        line = raw.strip()
        if not line:
            if not collected:
                continue
            break
        if line.endswith("*/") or line.startswith("*") or line.startswith("/**"):
            collected.append(line)
            if line.startswith("/**"):
                break
            continue
        if line.startswith("//"):
            collected.append(line)
            continue
        break

    cleaned: List[str] = []
    for line in reversed(collected):
        line = re.sub(r"^/\*\*\s?", "", line)
        line = re.sub(r"\*/\s?$", "", line)
        line = re.sub(r"^\s*\*\s?", "", line)
        line = re.sub(r"^//\s?", "", line)
        line = line.strip()
        if line:
            cleaned.append(line)
    return "\n".join(cleaned) or None


# ===================================================================
# Tree utilities
# ===================================================================

def _walk(node: Any) -> Iterator[Any]:
    """Pre-order traversal without recursion (deep trees are common in JS)."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def _has_ancestor(node: Any, kinds: set) -> bool:
    current = node.parent
    while current is not None:
        if current.type in kinds:
            return True
        current = current.parent
    return False


def _is_notable_initializer(value_text: str) -> bool:
    return any(p in value_text for p in HOOK_PATTERNS + FACTORY_PATTERNS)


def _text(node: Any, src: bytes) -> str:
    return src[node.start_byte:node.end_byte].decode("utf-8", errors="replace")
