# results.py
"""Read-only views over the final mapping state of a regulation."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .document_ingestion import get_regulation
from .models import Control, Requirement, RequirementControl, RequirementTag, Tag

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.2


@dataclass
class ResultRow:
    requirement_id: int
    requirement_text: str
    tag_name: Optional[str]
    framework: str
    control_code: str
    control_title: str
    similarity_score: float
    source: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GroupedResultRow:
    """One mapping with every tag of its requirement."""

    requirement_id: int
    requirement_text: str
    framework: str
    control_code: str
    control_title: str
    similarity_score: float
    source: str
    tag_names: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _result_query(db: Session, regulation_id: int, threshold: float):
    return (
        db.query(
            Requirement.id,
            Requirement.text,
            Tag.name,
            Control.framework,
            Control.control_id,
            Control.title,
            RequirementControl.similarity_score,
            RequirementControl.source,
            RequirementControl.id,
        )
        .select_from(RequirementControl)
        .join(Requirement, RequirementControl.requirement_id == Requirement.id)
        .outerjoin(RequirementTag, RequirementTag.requirement_id == Requirement.id)
        .outerjoin(Tag, Tag.id == RequirementTag.tag_id)
        .join(Control, RequirementControl.control_id == Control.id)
        .filter(Requirement.regulation_id == regulation_id)
        .filter(RequirementControl.similarity_score >= threshold)
        .order_by(Requirement.id, Control.framework, Control.control_id, Tag.name)
    )


def assemble_results(
    db: Session, regulation_id: int, threshold: float = DEFAULT_THRESHOLD
) -> List[ResultRow]:
    """Return scored mappings at or above ``threshold``, one row per tag.

    A requirement carrying several tags appears once per tag for each of
    its mappings, which shows every tag that could have driven the
    match; a requirement without tags yields ``tag_name=None``.
    Rows are ordered by requirement id, framework and control code.
    """
    get_regulation(db, regulation_id)
    rows = [
        ResultRow(
            requirement_id=req_id,
            requirement_text=text,
            tag_name=tag_name,
            framework=framework,
            control_code=control_code,
            control_title=control_title,
            similarity_score=score,
            source=source,
        )
        for (
            req_id,
            text,
            tag_name,
            framework,
            control_code,
            control_title,
            score,
            source,
            _mapping_id,
        ) in _result_query(db, regulation_id, threshold)
    ]
    logger.debug(f"Regulation {regulation_id}: {len(rows)} result rows >= {threshold}")
    return rows


def assemble_grouped_results(
    db: Session, regulation_id: int, threshold: float = DEFAULT_THRESHOLD
) -> List[GroupedResultRow]:
    """Like :func:`assemble_results` but one row per mapping with its tags listed."""
    get_regulation(db, regulation_id)
    grouped: Dict[int, GroupedResultRow] = {}
    for (
        req_id,
        text,
        tag_name,
        framework,
        control_code,
        control_title,
        score,
        source,
        mapping_id,
    ) in _result_query(db, regulation_id, threshold):
        row = grouped.get(mapping_id)
        if row is None:
            row = GroupedResultRow(
                requirement_id=req_id,
                requirement_text=text,
                framework=framework,
                control_code=control_code,
                control_title=control_title,
                similarity_score=score,
                source=source,
            )
            grouped[mapping_id] = row
        if tag_name is not None and tag_name not in row.tag_names:
            row.tag_names.append(tag_name)
    # dicts keep insertion order, which follows the query ordering
    return list(grouped.values())
