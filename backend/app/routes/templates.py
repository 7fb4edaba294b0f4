"""Bundled workflow templates.

Each ``kobe/templates/<name>.json`` file holds one ready-made graph in the
editor's node format; its file stem is the template name.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from fastapi import APIRouter, HTTPException

import kobe

from ..schemas import TemplateDetail, TemplateListItem

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v2/templates", tags=["templates"])

TEMPLATES_DIR = Path(kobe.__file__).parent / "templates"


def _read(path: Path) -> Optional[Dict[str, Any]]:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error(f"Skipping unreadable template {path.name}: {e}")
        return None


def _template_files() -> Dict[str, Path]:
    # Only stems of shipped files are addressable, so '../x' never resolves
    if not TEMPLATES_DIR.is_dir():
        return {}
    return {p.stem: p for p in sorted(TEMPLATES_DIR.glob("*.json"))}


def _iter_templates() -> Iterator[Dict[str, Any]]:
    for path in _template_files().values():
        data = _read(path)
        if data is not None:
            yield data


@router.get("", response_model=List[TemplateListItem])
async def list_templates() -> List[TemplateListItem]:
    return [
        TemplateListItem(
            name=data["name"],
            title=data["title"],
            description=data["description"],
            icon=data.get("icon"),
        )
        for data in _iter_templates()
    ]


@router.get("/{name}", response_model=TemplateDetail)
async def get_template(name: str) -> TemplateDetail:
    """Return one template, ready to post to /api/v2/workflows/run."""
    path = _template_files().get(name)
    data = _read(path) if path is not None else None
    if data is None:
        raise HTTPException(status_code=404, detail=f"Template '{name}' not found")

    return TemplateDetail(
        name=data["name"],
        title=data["title"],
        description=data["description"],
        icon=data.get("icon"),
        nodes=data.get("nodes", []),
        edges=data.get("edges", []),
    )
