import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from regmapper.document_ingestion import register_regulation
from regmapper.embeddings import EmbeddingProvider
from regmapper.errors import EmbeddingProviderError
from regmapper.models import Regulation

DIM = 64

SAMPLE_TEXT = (
    "Article 1. Access must be restricted. "
    "Article 2. Data shall be encrypted at rest."
)
REQ_ACCESS = "Access must be restricted."
REQ_ENCRYPT = "Data shall be encrypted at rest."

# Control.semantic_text() of the seeded controls used in tests
CTRL_A911 = (
    "Access control policy Establish, document and review an access control policy."
)
CTRL_A923 = (
    "Management of privileged access rights The allocation and use of privileged "
    "access rights shall be restricted and controlled."
)
CTRL_PRDS1 = "Data-at-rest protection Data-at-rest is protected."


def unit(*axes: int, dim: int = DIM) -> List[float]:
    """Vector with 1.0 on the given axes."""
    vec = [0.0] * dim
    for axis in axes:
        vec[axis] = 1.0
    return vec


class StubEmbedder(EmbeddingProvider):
    """Deterministic embedder for tests.

    Texts listed in ``vectors`` get that vector; any other text gets its
    own one-hot axis (counting down from the last dimension), so unknown
    texts are orthogonal to each other.
    """

    def __init__(
        self,
        vectors: Optional[Dict[str, Sequence[float]]] = None,
        *,
        fail_on: Optional[str] = None,
        delay: float = 0.0,
    ):
        super().__init__()
        self.vectors = {k: list(v) for k, v in (vectors or {}).items()}
        self.fail_on = fail_on
        self.delay = delay
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._next_axis = DIM - 1

    async def embed(self, text: str) -> List[float]:
        clean = self._clean(text)
        self.calls.append(clean)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if self.fail_on is not None and self.fail_on in clean:
                raise EmbeddingProviderError("Embedding provider failed: stub")
            if clean not in self.vectors:
                self.vectors[clean] = unit(self._next_axis)
                self._next_axis -= 1
            return self._check_dimension(self.vectors[clean])
        finally:
            self.in_flight -= 1


def write_document(directory: Path, text: str, name: str = "regulation.txt") -> Path:
    path = Path(directory) / name
    path.write_text(text, encoding="utf-8")
    return path


def create_regulation(db, directory: Path, text: str = SAMPLE_TEXT, name: str = "regulation.txt") -> Regulation:
    """Write ``text`` to a file and register it as a regulation."""
    return register_regulation(write_document(directory, text, name), db)


def mock_embedding_response(vector: Sequence[float]) -> dict:
    return {
        "object": "list",
        "data": [{"object": "embedding", "index": 0, "embedding": list(vector)}],
        "model": "text-embedding-3-small",
        "usage": {"prompt_tokens": 5, "total_tokens": 5},
    }
