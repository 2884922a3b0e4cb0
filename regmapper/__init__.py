# regmapper package
"""Regulation parser and control mapper - splits regulatory documents into requirements and maps them to ISO27001 / NIST-CSF controls."""

from .models import (
    Regulation, Requirement, Tag, RequirementTag, Control, ControlTag,
    RequirementControl
)
from .splitter import split_clauses, parse_regulation
from .tagger import tag_requirements
from .mapper.keyword_mapper import map_controls
from .mapper.semantic_mapper import semantic_rescore, semantic_discover
from .results import assemble_results, assemble_grouped_results, ResultRow
from .embeddings import (
    EmbeddingProvider, OpenAIEmbeddingClient, HashingEmbedder, cosine_similarity
)
from .pipeline import MappingPipeline, StageOutcome, Phase, regulation_phase

__version__ = "1.0.0"

__all__ = [
    # Models
    "Regulation", "Requirement", "Tag", "RequirementTag", "Control", "ControlTag",
    "RequirementControl",

    # Stages
    "split_clauses", "parse_regulation", "tag_requirements", "map_controls",
    "semantic_rescore", "semantic_discover",
    "assemble_results", "assemble_grouped_results", "ResultRow",

    # Embeddings
    "EmbeddingProvider", "OpenAIEmbeddingClient", "HashingEmbedder", "cosine_similarity",

    # Orchestration
    "MappingPipeline", "StageOutcome", "Phase", "regulation_phase",
]
