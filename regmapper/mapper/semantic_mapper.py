# semantic_mapper.py
"""Embedding-based rescoring of requirement → control mappings.

This module augments the keyword mapping of
:mod:`regmapper.mapper.keyword_mapper` with vector similarity.  For
each ``keyword`` mapping of a regulation the requirement text and the
control's ``title description`` are embedded, and the cosine of the
two vectors replaces the fixed keyword score.  The row keeps its id
and its source becomes ``hybrid``: both signals agree on the link and
the score now carries the semantic strength.

All updates of one invocation are staged in memory and committed as a
single batch once every embedding lookup has finished.  Any failure
(empty text, provider error, dimension mismatch, expired deadline)
discards the staged batch and leaves the database untouched.

:func:`semantic_discover` is the purely semantic counterpart: it
scores tagged requirements against controls they are not yet linked
to and stores strong matches with source ``semantic``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..document_ingestion import get_regulation
from ..embeddings import EmbeddingProvider, cosine_similarity
from ..errors import (
    NoControlsConfigured,
    NoKeywordMappings,
    NoTaggedRequirements,
    PersistenceFailure,
    StageTimeout,
)
from ..models import Control, Requirement, RequirementControl

logger = logging.getLogger(__name__)

HYBRID_SOURCE = "hybrid"
SEMANTIC_SOURCE = "semantic"


class _EmbeddingCache:
    """Per-invocation memo so repeated texts are embedded once."""

    def __init__(self, embedder: EmbeddingProvider):
        self.embedder = embedder
        self._tasks: Dict[str, asyncio.Task] = {}

    def get(self, text: str) -> asyncio.Task:
        task = self._tasks.get(text)
        if task is None:
            task = asyncio.ensure_future(self.embedder.embed(text))
            self._tasks[text] = task
        return task

    def cancel_pending(self) -> None:
        for task in self._tasks.values():
            if not task.done():
                task.cancel()


async def _score_pair(
    cache: _EmbeddingCache, requirement_text: str, control_text: str
) -> float:
    req_embedding, ctrl_embedding = await asyncio.gather(
        cache.get(requirement_text), cache.get(control_text)
    )
    return cosine_similarity(req_embedding, ctrl_embedding)


async def _with_deadline(coro, timeout: Optional[float], regulation_id: int):
    if timeout is None:
        return await coro
    try:
        return await asyncio.wait_for(coro, timeout)
    except asyncio.TimeoutError as e:
        raise StageTimeout(
            f"Semantic mapping for regulation {regulation_id} exceeded {timeout}s"
        ) from e


async def _compute_rescores(
    mappings: List[Tuple[RequirementControl, str, str]],
    embedder: EmbeddingProvider,
) -> List[Tuple[RequirementControl, float]]:
    cache = _EmbeddingCache(embedder)
    try:
        staged = []
        for mapping, requirement_text, control_text in mappings:
            score = await _score_pair(cache, requirement_text, control_text)
            logger.debug(f"Mapping {mapping.id}: cosine={score:.4f}")
            staged.append((mapping, score))
        return staged
    finally:
        cache.cancel_pending()


def _keyword_mappings(db: Session, regulation_id: int):
    return (
        db.query(RequirementControl, Requirement.text, Control)
        .join(Requirement, Requirement.id == RequirementControl.requirement_id)
        .join(Control, Control.id == RequirementControl.control_id)
        .filter(Requirement.regulation_id == regulation_id)
        .filter(RequirementControl.source == "keyword")
        .order_by(RequirementControl.id)
        .all()
    )


async def semantic_rescore(
    db: Session,
    regulation_id: int,
    embedder: EmbeddingProvider,
    *,
    timeout: Optional[float] = None,
) -> int:
    """Rescore keyword mappings with cosine similarity.

    Parameters
    ----------
    db : Session
        SQLAlchemy session.
    regulation_id : int
        Regulation whose mappings are rescored.
    embedder : EmbeddingProvider
        Source of text embeddings.
    timeout : float, optional
        Deadline in seconds for the whole invocation.

    Returns
    -------
    int
        Number of mappings updated to ``hybrid``.  Mappings whose
        requirement or control text is blank are skipped and stay
        ``keyword``.

    Raises
    ------
    NoKeywordMappings
        The keyword mapper has not produced anything for the regulation.
    EmbeddingUnavailable, EmbeddingProviderError, DimensionMismatch, StageTimeout
        Embedding failed; no mapping was updated.
    """
    get_regulation(db, regulation_id)

    rows = _keyword_mappings(db, regulation_id)
    if not rows:
        raise NoKeywordMappings(
            "No keyword-based mappings found for this regulation. Run map-controls first."
        )

    candidates = []
    for mapping, requirement_text, control in rows:
        requirement_text = (requirement_text or "").strip()
        control_text = control.semantic_text()
        if not requirement_text or not control_text:
            logger.debug(f"Skipping mapping {mapping.id}: empty text")
            continue
        candidates.append((mapping, requirement_text, control_text))

    staged = await _with_deadline(
        _compute_rescores(candidates, embedder), timeout, regulation_id
    )

    try:
        for mapping, score in staged:
            mapping.similarity_score = score
            mapping.source = HYBRID_SOURCE
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure("Error during semantic mapping", e) from e

    logger.info(
        f"Semantic cosine mapping completed for regulation {regulation_id}: "
        f"{len(staged)} of {len(rows)} mappings updated"
    )
    return len(staged)


async def semantic_discover(
    db: Session,
    regulation_id: int,
    embedder: EmbeddingProvider,
    *,
    threshold: float = 0.6,
    timeout: Optional[float] = None,
) -> int:
    """Link tagged requirements to unmapped controls by similarity alone.

    Every (tagged requirement, control) pair without an existing mapping
    is scored; pairs scoring at least ``threshold`` are inserted with
    source ``semantic``.

    Returns
    -------
    int
        Number of ``semantic`` mappings inserted.
    """
    get_regulation(db, regulation_id)

    requirements = (
        db.query(Requirement)
        .filter_by(regulation_id=regulation_id, status="tagged")
        .order_by(Requirement.id)
        .all()
    )
    if not requirements:
        raise NoTaggedRequirements("No tagged requirements found for this regulation")

    controls = db.query(Control).order_by(Control.id).all()
    if not controls:
        raise NoControlsConfigured("No controls found. Seed the controls table first.")

    mapped = {
        (requirement_id, control_id)
        for requirement_id, control_id in db.query(
            RequirementControl.requirement_id, RequirementControl.control_id
        ).filter(RequirementControl.requirement_id.in_([r.id for r in requirements]))
    }

    pairs = []
    for requirement in requirements:
        requirement_text = (requirement.text or "").strip()
        if not requirement_text:
            continue
        for control in controls:
            control_text = control.semantic_text()
            if not control_text or (requirement.id, control.id) in mapped:
                continue
            pairs.append((requirement.id, control.id, requirement_text, control_text))

    async def _compute() -> List[Tuple[int, int, float]]:
        cache = _EmbeddingCache(embedder)
        try:
            scored = []
            for requirement_id, control_id, requirement_text, control_text in pairs:
                score = await _score_pair(cache, requirement_text, control_text)
                if score >= threshold:
                    scored.append((requirement_id, control_id, score))
            return scored
        finally:
            cache.cancel_pending()

    scored = await _with_deadline(_compute(), timeout, regulation_id)

    try:
        for requirement_id, control_id, score in scored:
            db.add(
                RequirementControl(
                    requirement_id=requirement_id,
                    control_id=control_id,
                    similarity_score=score,
                    source=SEMANTIC_SOURCE,
                )
            )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure("Error during semantic discovery", e) from e

    logger.info(
        f"Semantic discovery for regulation {regulation_id}: "
        f"{len(scored)} of {len(pairs)} candidate pairs above {threshold}"
    )
    return len(scored)
