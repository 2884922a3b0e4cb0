import pytest

from regmapper.errors import RegulationNotFound
from regmapper.mapper.keyword_mapper import map_controls
from regmapper.mapper.semantic_mapper import semantic_rescore
from regmapper.models import Control, RequirementControl
from regmapper.results import assemble_grouped_results, assemble_results
from regmapper.splitter import parse_regulation
from regmapper.tagger import tag_requirements
from tests.helpers import CTRL_A911, REQ_ACCESS, StubEmbedder, create_regulation, unit


@pytest.fixture
def incident_regulation(seeded_db, tmp_path):
    """One requirement with two tags and three keyword mappings"""
    reg = create_regulation(
        seeded_db, tmp_path, "Article 1 Security incidents must be logged.", "incident.txt"
    )
    parse_regulation(seeded_db, reg.id)
    tag_requirements(seeded_db, reg.id)
    map_controls(seeded_db, reg.id)
    return reg


class TestAssembleResults:
    def test_keyword_mappings(self, seeded_db, mapped_regulation):
        rows = assemble_results(seeded_db, mapped_regulation.id)

        assert [(r.control_code, r.tag_name) for r in rows] == [
            ("A.9.1.1", "Access control"),
            ("A.9.2.3", "Access control"),
        ]
        first = rows[0].to_dict()
        assert first == {
            "requirement_id": mapped_regulation.requirements[0].id,
            "requirement_text": REQ_ACCESS,
            "tag_name": "Access control",
            "framework": "ISO27001",
            "control_code": "A.9.1.1",
            "control_title": "Access control policy",
            "similarity_score": 1.0,
            "source": "keyword",
        }

    def test_one_row_per_tag(self, seeded_db, incident_regulation):
        rows = assemble_results(seeded_db, incident_regulation.id)

        assert len(rows) == 6
        assert [(r.framework, r.control_code, r.tag_name) for r in rows] == [
            ("ISO27001", "A.12.4.1", "Incident Response"),
            ("ISO27001", "A.12.4.1", "Logging & Monitoring"),
            ("ISO27001", "A.16.1.1", "Incident Response"),
            ("ISO27001", "A.16.1.1", "Logging & Monitoring"),
            ("NIST-CSF", "RS.RP-1", "Incident Response"),
            ("NIST-CSF", "RS.RP-1", "Logging & Monitoring"),
        ]

    @pytest.mark.asyncio
    async def test_threshold_after_rescoring(self, seeded_db, mapped_regulation):
        embedder = StubEmbedder({REQ_ACCESS: unit(0, 1), CTRL_A911: unit(0)})
        await semantic_rescore(seeded_db, mapped_regulation.id, embedder)

        rows = assemble_results(seeded_db, mapped_regulation.id)
        assert [r.control_code for r in rows] == ["A.9.1.1"]
        assert rows[0].source == "hybrid"
        assert rows[0].similarity_score == pytest.approx(0.7071, abs=1e-4)

        everything = assemble_results(seeded_db, mapped_regulation.id, threshold=0.0)
        assert [r.control_code for r in everything] == ["A.9.1.1", "A.9.2.3"]

        assert assemble_results(seeded_db, mapped_regulation.id, threshold=0.9) == []

    def test_untagged_requirement_has_no_tag(self, seeded_db, tmp_path):
        reg = create_regulation(seeded_db, tmp_path, "Article 1 Nothing relevant here.")
        parse_regulation(seeded_db, reg.id)
        control = seeded_db.query(Control).filter_by(control_id="DE.AE-1").one()
        seeded_db.add(
            RequirementControl(
                requirement_id=reg.requirements[0].id,
                control_id=control.id,
                similarity_score=0.9,
                source="semantic",
            )
        )
        seeded_db.commit()

        rows = assemble_results(seeded_db, reg.id)

        assert len(rows) == 1
        assert rows[0].tag_name is None
        assert rows[0].source == "semantic"

    def test_other_regulations_excluded(self, seeded_db, mapped_regulation, incident_regulation):
        codes = {r.control_code for r in assemble_results(seeded_db, mapped_regulation.id)}
        assert codes == {"A.9.1.1", "A.9.2.3"}

    def test_regulation_without_mappings(self, seeded_db, tagged_regulation):
        assert assemble_results(seeded_db, tagged_regulation.id) == []

    def test_unknown_regulation(self, seeded_db):
        with pytest.raises(RegulationNotFound):
            assemble_results(seeded_db, 123)


class TestAssembleGroupedResults:
    def test_one_row_per_mapping(self, seeded_db, incident_regulation):
        rows = assemble_grouped_results(seeded_db, incident_regulation.id)

        assert [r.control_code for r in rows] == ["A.12.4.1", "A.16.1.1", "RS.RP-1"]
        for row in rows:
            assert row.tag_names == ["Incident Response", "Logging & Monitoring"]
            assert row.similarity_score == 1.0

    def test_to_dict(self, seeded_db, mapped_regulation):
        row = assemble_grouped_results(seeded_db, mapped_regulation.id)[0]

        assert row.to_dict()["tag_names"] == ["Access control"]
        assert "tag_name" not in row.to_dict()

    def test_unknown_regulation(self, seeded_db):
        with pytest.raises(RegulationNotFound):
            assemble_grouped_results(seeded_db, 123)
