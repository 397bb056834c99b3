"""
Expansion of OVAL criteria trees into disjunctive normal form.

A criteria tree is turned into a list of clauses, each clause a list of
criterions that must all hold. Any one clause being true implies the
advisory condition holds.

- AND over children: cartesian product of the children's clauses
- OR over children: concatenation of the children's clauses
- Criterions held directly by an internal node act as one more child
- Any other operator yields no clauses and logs a warning
"""
import logging
from typing import List

from .oval_parser import CriteriaNode, Criterion

logger = logging.getLogger(__name__)

AND = "AND"
OR = "OR"

# Informational criterions that carry no version fact
IGNORED_CRITERIONS = (
    " is signed with Red Hat ",
    " Client is installed",
    " Workstation is installed",
    " ComputeNode is installed",
)

Clause = List[Criterion]


def is_ignored(criterion: Criterion) -> bool:
    return any(marker in criterion.comment for marker in IGNORED_CRITERIONS)


def filter_criterions(criterions: List[Criterion]) -> List[Criterion]:
    return [c for c in criterions if not is_ignored(c)]


def expand_leaf(node: CriteriaNode) -> List[Clause]:
    """Clauses for a node's own criterions, ignoring its children."""
    criterions = filter_criterions(node.criterions)

    if node.operator == AND:
        return [criterions]
    if node.operator == OR:
        return [[c] for c in criterions]

    logger.warning(f"Unsupported criteria operator {node.operator!r}; no clauses produced")
    return []


def expand(node: CriteriaNode) -> List[Clause]:
    """
    Expand a criteria tree into DNF clauses.

    Args:
        node: Root of the criteria tree

    Returns:
        List of conjunctive clauses
    """
    if node.is_leaf:
        return expand_leaf(node)

    groups = [expand(child) for child in node.children]
    if node.criterions:
        groups.append(expand_leaf(node))

    if node.operator == AND:
        clauses: List[Clause] = groups[0]
        for group in groups[1:]:
            clauses = [clause + other for clause in clauses for other in group]
        return clauses

    if node.operator == OR:
        return [clause for group in groups for clause in group]

    logger.warning(f"Unsupported criteria operator {node.operator!r}; no clauses produced")
    return []
