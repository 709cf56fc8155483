"""Root discovery: cell definitions that no other definition references."""

from __future__ import annotations

import logging
from typing import List, Set

from gdsview.store import CellDefinitionHandle, GraphStore

logger = logging.getLogger(__name__)


def find_roots(store: GraphStore) -> List[CellDefinitionHandle]:
    """Return unreferenced definitions in creation order.

    A graph where every definition is referenced (fully cyclic) yields an
    empty list; callers decide whether that is an error.
    """
    non_roots: Set[CellDefinitionHandle] = set()
    for _, definition in store.definitions():
        for cell_ref in definition.cell_refs:
            non_roots.add(cell_ref.target)

    roots = [handle for handle, _ in store.definitions() if handle not in non_roots]
    logger.debug("Found %d root definitions", len(roots))
    return roots
