# keyword_mapper.py
"""Keyword-based mapping between tagged requirements and controls.

For each (requirement, tag) pair of a regulation's tagged requirements
the control catalogue is scanned.  A control matches when its
lower-cased ``code title description`` text contains the tag keyword
or the tag name.  Matches are stored as ``keyword`` mappings with a
fixed similarity of 1.0.  The whole run is one transaction and a
mapping that already exists for the pair is never inserted twice, so
the stage can be re-run safely.
"""

from __future__ import annotations

import logging
from typing import List, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..document_ingestion import get_regulation
from ..errors import NoControlsConfigured, NoTaggedRequirements, PersistenceFailure
from ..models import Control, Requirement, RequirementControl, RequirementTag, Tag

logger = logging.getLogger(__name__)

KEYWORD_SCORE = 1.0
KEYWORD_SOURCE = "keyword"
# A hybrid row is a keyword row after rescoring; it still counts as mapped.
GUARDED_SOURCES = ("keyword", "hybrid")


def control_matches_tag(control: Control, tag_name: str, tag_keyword: str) -> bool:
    """Return True if the control text contains the tag keyword or name."""
    ctrl_text = control.searchable_text()
    keyword = (tag_keyword or "").lower()
    name = (tag_name or "").lower()
    return bool((keyword and keyword in ctrl_text) or (name and name in ctrl_text))


def _tagged_pairs(db: Session, regulation_id: int) -> List[Tuple[int, str, str]]:
    rows = (
        db.query(RequirementTag.requirement_id, Tag.name, Tag.keyword)
        .join(Requirement, Requirement.id == RequirementTag.requirement_id)
        .join(Tag, Tag.id == RequirementTag.tag_id)
        .filter(Requirement.regulation_id == regulation_id)
        .filter(Requirement.status == "tagged")
        .order_by(RequirementTag.requirement_id, Tag.name)
        .distinct()
        .all()
    )
    return [(requirement_id, name, keyword) for requirement_id, name, keyword in rows]


def map_controls(db: Session, regulation_id: int) -> int:
    """Insert keyword mappings for a regulation's tagged requirements.

    Returns
    -------
    int
        Number of newly inserted mappings (0 on a repeated run).

    Raises
    ------
    NoTaggedRequirements
        No requirement of the regulation is tagged yet.
    NoControlsConfigured
        The control table is empty.
    PersistenceFailure
        The insert batch could not be committed; nothing was written.
    """
    get_regulation(db, regulation_id)

    pairs = _tagged_pairs(db, regulation_id)
    if not pairs:
        raise NoTaggedRequirements(
            "No tagged requirements found for this regulation"
        )

    controls = db.query(Control).order_by(Control.id).all()
    if not controls:
        raise NoControlsConfigured("No controls found. Seed the controls table first.")

    requirement_ids = sorted({requirement_id for requirement_id, _, _ in pairs})
    mapped: Set[Tuple[int, int]] = {
        (requirement_id, control_id)
        for requirement_id, control_id in db.query(
            RequirementControl.requirement_id, RequirementControl.control_id
        )
        .filter(RequirementControl.requirement_id.in_(requirement_ids))
        .filter(RequirementControl.source.in_(GUARDED_SOURCES))
    }

    mappings_inserted = 0
    try:
        for requirement_id, tag_name, tag_keyword in pairs:
            for control in controls:
                if not control_matches_tag(control, tag_name, tag_keyword):
                    continue
                if (requirement_id, control.id) in mapped:
                    continue  # already mapped
                db.add(
                    RequirementControl(
                        requirement_id=requirement_id,
                        control_id=control.id,
                        similarity_score=KEYWORD_SCORE,
                        source=KEYWORD_SOURCE,
                    )
                )
                mapped.add((requirement_id, control.id))
                mappings_inserted += 1
                logger.debug(
                    f"Requirement {requirement_id} -> {control.framework} "
                    f"{control.control_id} via '{tag_name}'"
                )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure("Error during control mapping", e) from e

    logger.info(
        f"Keyword-based control mapping completed for regulation {regulation_id}: "
        f"{mappings_inserted} mappings inserted"
    )
    return mappings_inserted
