# splitter.py
"""Split regulation text into clauses and store them as requirements.

A clause starts at every ``Article <n>``, ``Section <n>`` or
``Clause <n>`` marker.  The markers themselves are dropped, so
``"Article 1. Access must be restricted."`` yields the single clause
``"Access must be restricted."``.  Text in front of the first marker
becomes its own clause when it is not blank.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .document_ingestion import get_regulation, read_regulation_text
from .errors import EmptyDocument, PersistenceFailure, RegulationAlreadyParsed
from .models import Requirement

logger = logging.getLogger(__name__)

# "Article 12", "section 3.1:", "CLAUSE 4 -" ...
CLAUSE_DELIMITER_RE = re.compile(
    r"\b(?:Article|Section|Clause)\s+\d+(?:\.\d+)*\s*[.:)–—-]?",
    re.IGNORECASE,
)


def split_clauses(text: str) -> List[str]:
    """Return the non-empty, trimmed clauses of ``text`` in document order."""
    if not text:
        return []
    return [c.strip() for c in CLAUSE_DELIMITER_RE.split(text) if c.strip()]


def parse_regulation(
    db: Session,
    regulation_id: int,
    text: Optional[str] = None,
    *,
    replace: bool = False,
) -> int:
    """Parse a regulation into ``pending_analysis`` requirements.

    Parameters
    ----------
    db : Session
        SQLAlchemy session.
    regulation_id : int
        Owning regulation.
    text : str, optional
        Document text.  When omitted the regulation's file is read.
    replace : bool
        Delete previously parsed requirements first instead of failing.

    Returns
    -------
    int
        Number of requirements inserted.
    """
    regulation = get_regulation(db, regulation_id)

    existing = (
        db.query(func.count(Requirement.id))
        .filter(Requirement.regulation_id == regulation_id)
        .scalar()
    )
    if existing and not replace:
        raise RegulationAlreadyParsed(
            f"Regulation {regulation_id} already has {existing} requirements"
        )

    if text is None:
        text = read_regulation_text(regulation)

    clauses = split_clauses(text)
    if not clauses:
        raise EmptyDocument("No clauses found in file")

    if existing:
        for requirement in list(regulation.requirements):
            db.delete(requirement)
        db.flush()
        logger.info(f"Removed {existing} previous requirements of regulation {regulation_id}")

    inserted = 0
    try:
        for clause_number, clause_text in enumerate(clauses, start=1):
            db.add(
                Requirement(
                    regulation_id=regulation_id,
                    clause_number=clause_number,
                    text=clause_text,
                    status="pending_analysis",
                )
            )
            inserted += 1
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Insert into requirements failed, batch of {len(clauses)} clauses rolled back: {e}")
        raise PersistenceFailure("Insert into requirements failed", e, inserted=0) from e

    logger.info(f"Regulation {regulation_id} parsed into {inserted} requirements")
    return inserted
