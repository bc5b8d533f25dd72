"""Static analysis of expression ASTs.

Extracts the form and external-data paths an expression reads, and the
identifiers and functions it references, so configuration can be checked
and the dependency graph built without evaluating anything.
"""

from dataclasses import dataclass
from typing import Iterator

from fieldlogic.expressions.parser import (
    ASTNode,
    ArrayLiteral,
    BinaryOp,
    Conditional,
    FunctionCall,
    Identifier,
    IndexAccess,
    Literal,
    MemberAccess,
    MethodCall,
    UnaryOp,
)

FORM = "form"
EXTERNAL = "external"

ROOT_PREFIX = "$root"


@dataclass(frozen=True)
class Dependency:
    """A value an entry reads.

    Attributes:
        source: FORM or EXTERNAL
        path: Dot path into the source, "" for the whole source
        absolute: For FORM paths, whether the path ignores array item scope
    """

    source: str
    path: str
    absolute: bool = False


def parse_dependency(text: str) -> Dependency:
    """Parse a dependsOn entry.

    Accepts `quantity`, `formValue.quantity`, `$root.currency` and
    `externalData.rates.eur`.
    """
    text = text.strip()
    if text == "externalData" or text.startswith("externalData."):
        return Dependency(EXTERNAL, text[len("externalData."):])
    if text == ROOT_PREFIX or text.startswith(ROOT_PREFIX + "."):
        return Dependency(FORM, text[len(ROOT_PREFIX) + 1:], absolute=True)
    if text == "rootFormValue" or text.startswith("rootFormValue."):
        return Dependency(FORM, text[len("rootFormValue."):], absolute=True)
    if text == "formValue" or text.startswith("formValue."):
        return Dependency(FORM, text[len("formValue."):])
    return Dependency(FORM, text)


def walk(node: ASTNode) -> Iterator[ASTNode]:
    """Yield node and all of its descendants, depth first."""
    yield node
    for child in _children(node):
        yield from walk(child)


def _children(node: ASTNode) -> list[ASTNode]:
    if isinstance(node, MemberAccess):
        return [node.object]
    if isinstance(node, IndexAccess):
        return [node.object, node.index]
    if isinstance(node, BinaryOp):
        return [node.left, node.right]
    if isinstance(node, UnaryOp):
        return [node.operand]
    if isinstance(node, Conditional):
        return [node.test, node.consequent, node.alternate]
    if isinstance(node, FunctionCall):
        return list(node.arguments)
    if isinstance(node, MethodCall):
        return [node.object, *node.arguments]
    if isinstance(node, ArrayLiteral):
        return list(node.elements)
    return []


def referenced_identifiers(node: ASTNode) -> set[str]:
    return {n.name for n in walk(node) if isinstance(n, Identifier)}


def referenced_functions(node: ASTNode) -> set[str]:
    return {n.name for n in walk(node) if isinstance(n, FunctionCall)}


def extract_dependencies(node: ASTNode, field_path: str | None = None) -> list[Dependency]:
    """Return the dependencies an expression reads, in first-seen order.

    Args:
        node: Parsed expression
        field_path: Absolute path of the hosting field, used for `fieldValue`

    `formValue.a.b` and `formValue['a']` chains become path dependencies. A
    chain broken by a computed index depends on its literal prefix. A bare
    `formValue` depends on the whole scope.
    """
    found: dict[Dependency, None] = {}
    _collect(node, field_path, found)
    return list(found)


def _collect(node: ASTNode, field_path: str | None, found: dict[Dependency, None]) -> None:
    chain = _chain(node)
    if chain is not None:
        root, segments, rest = chain
        dependency = _to_dependency(root, segments, field_path)
        if dependency is not None:
            found.setdefault(dependency, None)
        for child in rest:
            _collect(child, field_path, found)
        return

    for child in _children(node):
        _collect(child, field_path, found)


def _chain(node: ASTNode) -> tuple[str, list[str], list[ASTNode]] | None:
    """Split a member/index chain into (root identifier, literal segments, other nodes).

    Segments stop at the first computed index; the computed index and
    anything applied after it are returned for separate analysis.
    """
    links: list[ASTNode] = []
    current = node
    while isinstance(current, (MemberAccess, IndexAccess)):
        links.append(current)
        current = current.object
    if not isinstance(current, Identifier):
        return None

    links.reverse()
    segments: list[str] = []
    rest: list[ASTNode] = []
    broken = False
    for link in links:
        if isinstance(link, IndexAccess):
            if not broken and isinstance(link.index, Literal) and isinstance(
                link.index.value, (str, int)
            ) and not isinstance(link.index.value, bool):
                segments.append(str(link.index.value))
                continue
            broken = True
            rest.append(link.index)
        elif not broken:
            segments.append(link.member)
    return current.name, segments, rest


def _to_dependency(root: str, segments: list[str], field_path: str | None) -> Dependency | None:
    path = ".".join(segments)
    if root == "formValue":
        return Dependency(FORM, path)
    if root == "rootFormValue":
        return Dependency(FORM, path, absolute=True)
    if root == "externalData":
        return Dependency(EXTERNAL, path)
    if root == "fieldValue" and field_path is not None:
        return Dependency(FORM, ".".join(p for p in (field_path, path) if p), absolute=True)
    return None
