# tagger.py
"""Keyword tagging of requirements.

Every ``pending_analysis`` requirement of a regulation is checked
against all configured tags.  A tag matches when its keyword occurs in
the requirement text (case-insensitive substring).  Requirements with
at least one match become ``tagged``; the rest stay pending so a later
run with new tags can pick them up.
"""

import logging
from typing import List, Set, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .document_ingestion import get_regulation
from .errors import (
    NoPendingRequirements,
    NoTagsConfigured,
    PersistenceFailure,
    RegulationNotParsed,
)
from .models import Requirement, RequirementTag, Tag

logger = logging.getLogger(__name__)


def match_tags(text: str, tags: List[Tag]) -> List[Tag]:
    """Return the tags whose non-empty keyword occurs in ``text``."""
    text_lower = (text or "").lower()
    matched = []
    for tag in tags:
        keyword = (tag.keyword or "").lower()
        if not keyword:
            continue
        if keyword in text_lower:
            matched.append(tag)
    return matched


def tag_requirements(db: Session, regulation_id: int) -> int:
    """Tag the pending requirements of a regulation.

    Returns
    -------
    int
        Number of requirements that received at least one tag.

    Raises
    ------
    RegulationNotParsed
        The regulation has no requirements at all.
    NoPendingRequirements
        Every requirement is already tagged.
    NoTagsConfigured
        The tag table is empty.
    """
    get_regulation(db, regulation_id)

    pending = (
        db.query(Requirement)
        .filter_by(regulation_id=regulation_id, status="pending_analysis")
        .order_by(Requirement.id)
        .all()
    )
    if not pending:
        total = (
            db.query(func.count(Requirement.id))
            .filter(Requirement.regulation_id == regulation_id)
            .scalar()
        )
        if not total:
            raise RegulationNotParsed(
                f"Regulation {regulation_id} has not been parsed into requirements"
            )
        raise NoPendingRequirements(
            "No pending requirements found for this regulation"
        )

    tags = db.query(Tag).order_by(Tag.id).all()
    if not tags:
        raise NoTagsConfigured("No tags were found")

    existing: Set[Tuple[int, int]] = {
        (requirement_id, tag_id)
        for requirement_id, tag_id in db.query(
            RequirementTag.requirement_id, RequirementTag.tag_id
        ).filter(RequirementTag.requirement_id.in_([r.id for r in pending]))
    }

    tagged_count = 0
    try:
        for requirement in pending:
            matched = match_tags(requirement.text, tags)
            logger.debug(
                f"Requirement {requirement.id}: {[t.name for t in matched] or 'no tags'}"
            )
            if not matched:
                continue
            for tag in matched:
                if (requirement.id, tag.id) in existing:
                    continue
                db.add(RequirementTag(requirement_id=requirement.id, tag_id=tag.id))
                existing.add((requirement.id, tag.id))
            requirement.status = "tagged"
            tagged_count += 1
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure("Error during tagging process", e) from e

    logger.info(
        f"Tagging completed for regulation {regulation_id}: "
        f"{tagged_count}/{len(pending)} requirements tagged"
    )
    return tagged_count
