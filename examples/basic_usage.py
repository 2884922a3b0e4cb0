#!/usr/bin/env python3
"""
Regmapper Basic Usage Examples

Runs offline with the hashing embedder; set
REGMAPPER_EMBEDDING_PROVIDER=openai and OPENAI_API_KEY to use the
OpenAI embeddings endpoint instead.
"""

import asyncio
import os
import sys
import tempfile
from pathlib import Path

# Add root directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from regmapper.config import load_settings
from regmapper.db import create_db_engine, init_db, make_session_factory, seed_reference_data
from regmapper.pipeline import MappingPipeline
from regmapper.splitter import split_clauses

SAMPLE_REGULATION = """
Article 1. Access to production systems must be restricted to authorised staff.
Article 2. Personal data shall be encrypted at rest and in transit.
Article 3. Security incidents must be logged and reported within 72 hours.
"""


def setup_database():
    """Create an in-memory database with the reference tags and controls"""
    print("🔧 Setting up database...")
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    session = make_session_factory(engine)()
    stats = seed_reference_data(session)
    print(f"✅ Seeded {stats['tags']} tags and {stats['controls']} controls")
    return session


def example_clause_splitting():
    print("\n✂️  Clause splitting example:")
    for number, clause in enumerate(split_clauses(SAMPLE_REGULATION), 1):
        print(f"  {number}. {clause}")


async def example_pipeline(session):
    """Upload, parse, tag, map and rescore one regulation"""
    print("\n⚡ Pipeline example:")

    settings = load_settings()
    if not os.getenv("REGMAPPER_EMBEDDING_PROVIDER"):
        settings.embedding_provider = "hashing"

    with tempfile.NamedTemporaryFile("w", suffix=".txt", delete=False) as f:
        f.write(SAMPLE_REGULATION)
        path = Path(f.name)

    pipeline = MappingPipeline(session, settings=settings)
    try:
        upload = await pipeline.register(path, name="Sample security act")
        print(f"Uploaded regulation {upload.regulation_id}")

        for outcome in await pipeline.run_all(upload.regulation_id):
            status = "✓" if outcome.ok else "✗"
            print(f"  {status} {outcome.stage}: {outcome.count if outcome.ok else outcome.message}")

        results = await pipeline.results(upload.regulation_id, threshold=0.0, grouped=True)
        print(f"\nMappings ({results.count}):")
        for row in results.rows:
            print(
                f"  req {row['requirement_id']} -> {row['framework']} {row['control_code']}"
                f" ({row['similarity_score']:.2f}, {', '.join(row['tag_names'])})"
            )
    finally:
        await pipeline.close()
        os.unlink(path)


def main():
    """Main function with examples"""
    print("🚀 Regmapper - Usage Examples")
    print("=" * 50)

    session = setup_database()
    try:
        example_clause_splitting()
        asyncio.run(example_pipeline(session))
        print("\n✅ All examples completed successfully!")
    finally:
        session.close()


if __name__ == "__main__":
    main()
