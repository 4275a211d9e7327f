"""
Flattening / elaboration pass.

Walks a fragment tree depth-first, gives every symbol its qualified name,
resolves ports (immediate and deferred) against the tree and merges all
equations into one FlatSystem.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

from beartype import beartype

from bioproc.errors import NameCollisionError, UnresolvedPortError
from bioproc.expr import Expr
from bioproc.flat_model import FlatSystem
from bioproc.fragment import Fragment
from bioproc.types import VarKind


def qualify(path: str, name: str) -> str:
    """Qualified name of ``name`` inside the fragment at ``path``."""
    return f"{path}.{name}" if path else name


def _walk(root: Fragment) -> List[Tuple[str, Fragment, Tuple[Fragment, ...]]]:
    """Pre-order list of (path, fragment, ancestors nearest-first)."""
    result: List[Tuple[str, Fragment, Tuple[Fragment, ...]]] = []

    def visit(fragment: Fragment, path: str, ancestors: Tuple[Fragment, ...]) -> None:
        result.append((path, fragment, ancestors))
        for child in fragment.children:
            visit(child, qualify(path, child.name), (fragment,) + ancestors)

    visit(root, "", ())
    return result


@beartype
def flatten(root: Fragment) -> FlatSystem:
    """
    Flatten a fragment tree into one global system.

    Parameters
    ----------
    root : Fragment
        Top of the tree; its own symbols keep their local names

    Returns
    -------
    FlatSystem
        Qualified symbols and all equations in pre-order

    Raises
    ------
    UnresolvedPortError
        A deferred port has no ancestor containing its owner, or an
        immediate port points outside the referencing fragment
    NameCollisionError
        Two symbols end up with the same qualified name, or one fragment is
        reachable at two paths
    """
    nodes = _walk(root)

    # uid -> path, including fragments merged by extend()
    paths: Dict[int, str] = {}
    for path, fragment, _ in nodes:
        for uid in (fragment.uid, *sorted(fragment.absorbed)):
            if uid in paths:
                raise NameCollisionError(
                    f"Fragment '{fragment.name}' is composed twice: at '{paths[uid] or root.name}' "
                    f"and at '{path or root.name}'"
                )
            paths[uid] = path

    flat = FlatSystem(name=root.name, paths=paths)
    declared_by: Dict[str, str] = {}
    tables = {
        VarKind.VARIABLE: flat.variables,
        VarKind.PARAMETER: flat.parameters,
        VarKind.CONSTANT: flat.constants,
    }

    for path, fragment, ancestors in nodes:
        flat.fragment_paths.append(path)
        where = path or root.name

        for name, var in fragment.symbols.items():
            qualified = qualify(path, name)
            if qualified in declared_by:
                raise NameCollisionError(
                    f"Qualified name '{qualified}' is declared by fragment '{declared_by[qualified]}' "
                    f"and by fragment '{where}'"
                )
            declared_by[qualified] = where
            tables[var.kind][qualified] = var.renamed(qualified)

        def resolve(node: Expr) -> Expr:
            if node.owner is None or fragment.owns(node.owner):
                qualified = qualify(path, node.name)
            elif node.deferred:
                if not any(a.contains(node.owner) for a in ancestors):
                    raise UnresolvedPortError(
                        f"Deferred port '{node.label}' declared in fragment '{where}' is unresolved: "
                        f"no enclosing fragment contains '{node.scope}'"
                    )
                qualified = qualify(paths[node.owner], node.name)
            elif fragment.contains(node.owner):
                qualified = qualify(paths[node.owner], node.name)
            else:
                raise UnresolvedPortError(
                    f"Port '{node.label}' in fragment '{where}' does not point into its subtree"
                )
            return Expr(node.kind, name=qualified)

        for eq in fragment.equations:
            flat.equations.append(eq.map_symbols(resolve))

    return flat
