# pipeline.py
"""Stage orchestration for the requirement → control mapping pipeline.

The primary entry point is :class:`MappingPipeline`, which wraps a
SQLAlchemy session and an embedding provider and exposes every stage
(parse, tag, map-controls, semantic-map, results) as an async
operation returning a :class:`StageOutcome`.  Invocations for the same
regulation are serialized through a per-regulation lock, and
:meth:`MappingPipeline.run_all` resumes from the regulation's current
:class:`Phase` so a half-finished run can simply be started again.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .config import Settings
from .document_ingestion import delete_regulation, get_regulation, register_regulation
from .embeddings import EmbeddingProvider, get_embedder
from .errors import PipelineError
from .mapper.keyword_mapper import map_controls
from .mapper.semantic_mapper import semantic_discover, semantic_rescore
from .models import Requirement, RequirementControl
from .results import assemble_grouped_results, assemble_results
from .splitter import parse_regulation
from .tagger import tag_requirements

logger = logging.getLogger(__name__)


# mapping sources that belong to the keyword / rescore stages
PHASE_SOURCES = ("keyword", "hybrid")


class Phase(str, Enum):
    UPLOADED = "uploaded"
    PARSED = "parsed"
    TAGGED = "tagged"
    KEYWORD_MAPPED = "keyword_mapped"
    RESCORED = "rescored"


def regulation_phase(db: Session, regulation_id: int) -> Phase:
    """Derive how far the pipeline has progressed for a regulation.

    Only ``keyword`` and ``hybrid`` mappings advance the phase past
    ``TAGGED``; ``semantic`` rows from discovery are extra links and do not
    stand in for keyword mapping or rescoring.
    """
    get_regulation(db, regulation_id)

    statuses = dict(
        db.query(Requirement.status, func.count(Requirement.id))
        .filter(Requirement.regulation_id == regulation_id)
        .group_by(Requirement.status)
        .all()
    )
    if not statuses:
        return Phase.UPLOADED
    if not statuses.get("tagged"):
        return Phase.PARSED

    sources = dict(
        db.query(RequirementControl.source, func.count(RequirementControl.id))
        .join(Requirement, Requirement.id == RequirementControl.requirement_id)
        .filter(Requirement.regulation_id == regulation_id)
        .filter(RequirementControl.source.in_(PHASE_SOURCES))
        .group_by(RequirementControl.source)
        .all()
    )
    if not sources:
        return Phase.TAGGED
    if sources.get("keyword"):
        return Phase.KEYWORD_MAPPED
    return Phase.RESCORED


@dataclass
class StageOutcome:
    """Structured result of one stage invocation."""

    stage: str
    regulation_id: Optional[int]
    ok: bool
    count: Optional[int] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None
    rows: Optional[List[Dict[str, Any]]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class RegulationLocks:
    """asyncio locks keyed on regulation id."""

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}

    def get(self, regulation_id: int) -> asyncio.Lock:
        lock = self._locks.get(regulation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[regulation_id] = lock
        return lock


class MappingPipeline:
    """Run the mapping stages for regulations stored in ``db``."""

    def __init__(
        self,
        db: Session,
        embedder: Optional[EmbeddingProvider] = None,
        settings: Optional[Settings] = None,
        locks: Optional[RegulationLocks] = None,
    ):
        self.db = db
        self.settings = settings or Settings()
        self._embedder = embedder
        self.locks = locks or RegulationLocks()

    @property
    def embedder(self) -> EmbeddingProvider:
        if self._embedder is None:
            self._embedder = get_embedder(self.settings)
        return self._embedder

    async def close(self) -> None:
        if self._embedder is not None:
            await self._embedder.close()

    def _failure(
        self, stage: str, regulation_id: Optional[int], error: PipelineError
    ) -> StageOutcome:
        self.db.rollback()
        logger.error(f"{stage} failed for regulation {regulation_id}: [{error.kind}] {error}")
        return StageOutcome(
            stage=stage,
            regulation_id=regulation_id,
            ok=False,
            error_kind=error.kind,
            error=type(error).__name__,
            message=error.message,
        )

    async def _run(
        self,
        stage: str,
        regulation_id: Optional[int],
        action: Callable[[], Awaitable[Any]],
        message: str,
    ) -> StageOutcome:
        lock = self.locks.get(regulation_id) if regulation_id is not None else None
        try:
            if lock is not None:
                async with lock:
                    result = await action()
            else:
                result = await action()
        except PipelineError as e:
            return self._failure(stage, regulation_id, e)

        outcome = StageOutcome(stage=stage, regulation_id=regulation_id, ok=True, message=message)
        if isinstance(result, list):
            outcome.rows = [row.to_dict() for row in result]
            outcome.count = len(result)
        elif isinstance(result, int):
            outcome.count = result
        return outcome

    # ---- stages ---------------------------------------------------------
    async def register(self, file_path: Path, name: Optional[str] = None) -> StageOutcome:
        try:
            regulation = register_regulation(Path(file_path), self.db, name=name)
        except PipelineError as e:
            return self._failure("upload", None, e)
        return StageOutcome(
            stage="upload",
            regulation_id=regulation.id,
            ok=True,
            message="File uploaded successfully",
        )

    async def parse(
        self, regulation_id: int, text: Optional[str] = None, *, replace: bool = False
    ) -> StageOutcome:
        async def action():
            return parse_regulation(self.db, regulation_id, text, replace=replace)

        return await self._run(
            "parse", regulation_id, action, "Regulation parsed into requirements successfully"
        )

    async def tag(self, regulation_id: int) -> StageOutcome:
        async def action():
            return tag_requirements(self.db, regulation_id)

        return await self._run("tag", regulation_id, action, "Tagging completed")

    async def map_controls(self, regulation_id: int) -> StageOutcome:
        async def action():
            return map_controls(self.db, regulation_id)

        return await self._run(
            "map-controls", regulation_id, action, "Keyword-based control mapping completed"
        )

    async def semantic_map(
        self, regulation_id: int, *, timeout: Optional[float] = None
    ) -> StageOutcome:
        deadline = timeout if timeout is not None else self.settings.stage_timeout

        async def action():
            return await semantic_rescore(
                self.db, regulation_id, self.embedder, timeout=deadline
            )

        return await self._run(
            "semantic-map", regulation_id, action, "Semantic cosine mapping completed"
        )

    async def discover(
        self,
        regulation_id: int,
        *,
        threshold: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> StageOutcome:
        min_score = threshold if threshold is not None else self.settings.discover_threshold
        deadline = timeout if timeout is not None else self.settings.stage_timeout

        async def action():
            return await semantic_discover(
                self.db, regulation_id, self.embedder, threshold=min_score, timeout=deadline
            )

        return await self._run(
            "discover", regulation_id, action, "Semantic control discovery completed"
        )

    async def results(
        self,
        regulation_id: int,
        threshold: Optional[float] = None,
        *,
        grouped: bool = False,
    ) -> StageOutcome:
        min_score = threshold if threshold is not None else self.settings.min_similarity

        async def action():
            if grouped:
                return assemble_grouped_results(self.db, regulation_id, min_score)
            return assemble_results(self.db, regulation_id, min_score)

        return await self._run("results", regulation_id, action, "Results assembled")

    async def delete(self, regulation_id: int) -> StageOutcome:
        async def action():
            delete_regulation(self.db, regulation_id)

        return await self._run("delete", regulation_id, action, "Regulation deleted")

    def phase(self, regulation_id: int) -> Phase:
        return regulation_phase(self.db, regulation_id)

    async def run_all(
        self, regulation_id: int, text: Optional[str] = None
    ) -> List[StageOutcome]:
        """Run every outstanding stage, stopping at the first failure.

        Stages already completed according to :func:`regulation_phase`
        are not repeated.
        """
        try:
            phase = self.phase(regulation_id)
        except PipelineError as e:
            return [self._failure("run", regulation_id, e)]

        steps = []
        if phase == Phase.UPLOADED:
            steps.append(lambda: self.parse(regulation_id, text))
        if phase in (Phase.UPLOADED, Phase.PARSED):
            steps.append(lambda: self.tag(regulation_id))
        if phase in (Phase.UPLOADED, Phase.PARSED, Phase.TAGGED):
            steps.append(lambda: self.map_controls(regulation_id))
        if phase != Phase.RESCORED:
            steps.append(lambda: self.semantic_map(regulation_id))

        outcomes: List[StageOutcome] = []
        for step in steps:
            outcome = await step()
            outcomes.append(outcome)
            if not outcome.ok:
                break
        logger.info(
            f"Pipeline run for regulation {regulation_id} from phase {phase.value}: "
            f"{[(o.stage, o.ok) for o in outcomes]}"
        )
        return outcomes
