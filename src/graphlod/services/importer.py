"""Graph document loader"""

import json
import logging
from pathlib import Path
from typing import Any

from graphlod.services.validation import InputError

logger = logging.getLogger("graphlod.importer")


def normalize_document(document: Any) -> dict[str, list]:
    """
    Coerce a decoded document into ``{"nodes": [...], "edges": [...]}``.

    Collections that are missing or not lists become empty lists; records
    inside them are left for the validator.
    """
    if not isinstance(document, dict):
        return {"nodes": [], "edges": []}
    nodes = document.get("nodes")
    edges = document.get("edges")
    return {
        "nodes": nodes if isinstance(nodes, list) else [],
        "edges": edges if isinstance(edges, list) else [],
    }


def load_graph_file(path: Path) -> dict[str, list]:
    """
    Read a JSON graph document from disk.

    Raises InputError if the file is missing or is not valid JSON.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except (FileNotFoundError, IsADirectoryError, PermissionError) as e:
        raise InputError(f"Cannot read graph file {path}: {e}") from e

    try:
        document = json.loads(content)
    except json.JSONDecodeError as e:
        raise InputError(f"Graph file {path} is not valid JSON: {e}") from e

    graph = normalize_document(document)
    logger.info(
        f"Loaded {path}: {len(graph['nodes'])} node records, {len(graph['edges'])} edge records"
    )
    return graph
