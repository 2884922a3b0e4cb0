# models.py
"""SQLAlchemy models for the regulation mapping database.

This module defines ORM models for uploaded regulations, the
requirements (clauses) extracted from them, topical tags, the
compliance control catalogue and the scored links between
requirements and controls.  A regulation owns its requirements;
deleting it removes the requirements together with their tag
associations and control mappings.
"""

from datetime import datetime
from sqlalchemy import (
    Column,
    String,
    Text,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()

REQUIREMENT_STATUSES = ("pending_analysis", "tagged")
MAPPING_SOURCES = ("keyword", "semantic", "hybrid")


class Regulation(Base):
    __tablename__ = "regulations"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255))
    file_path = Column(Text, nullable=True)
    upload_date = Column(DateTime, default=datetime.utcnow)
    requirements = relationship(
        "Requirement",
        back_populates="regulation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Requirement.clause_number",
    )


class Requirement(Base):
    __tablename__ = "requirements"
    id = Column(Integer, primary_key=True, autoincrement=True)
    regulation_id = Column(
        Integer, ForeignKey("regulations.id", ondelete="CASCADE"), nullable=False
    )
    clause_number = Column(Integer, nullable=False)
    text = Column(Text)
    status = Column(
        Enum(*REQUIREMENT_STATUSES, name="requirement_status"),
        default="pending_analysis",
        nullable=False,
    )
    regulation = relationship("Regulation", back_populates="requirements")
    tag_links = relationship(
        "RequirementTag", cascade="all, delete-orphan", passive_deletes=True
    )
    control_links = relationship(
        "RequirementControl",
        back_populates="requirement",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Tag(Base):
    __tablename__ = "tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)
    keyword = Column(String(255), default="")


class RequirementTag(Base):
    __tablename__ = "requirement_tags"
    __table_args__ = (
        UniqueConstraint("requirement_id", "tag_id", name="uq_requirement_tag"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    requirement_id = Column(
        Integer, ForeignKey("requirements.id", ondelete="CASCADE"), nullable=False
    )
    tag_id = Column(Integer, ForeignKey("tags.id"), nullable=False)
    tag = relationship("Tag")


class Control(Base):
    __tablename__ = "controls"
    __table_args__ = (
        UniqueConstraint("framework", "control_id", name="uq_control_framework_code"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    framework = Column(String(50), nullable=False)  # e.g. "ISO27001", "NIST-CSF"
    control_id = Column(String(50), nullable=False)  # e.g. "A.9.2.3"
    title = Column(Text)
    description = Column(Text)

    def searchable_text(self) -> str:
        return " ".join(
            [self.control_id or "", self.title or "", self.description or ""]
        ).lower()

    def semantic_text(self) -> str:
        return f"{self.title or ''} {self.description or ''}".strip()


class ControlTag(Base):
    """Reserved link between controls and tags (not used by the pipeline)."""

    __tablename__ = "control_tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    control_db_id = Column(Integer, ForeignKey("controls.id"))
    tag_id = Column(Integer, ForeignKey("tags.id"))


class RequirementControl(Base):
    __tablename__ = "requirement_controls"
    __table_args__ = (
        UniqueConstraint(
            "requirement_id", "control_id", "source", name="uq_requirement_control_source"
        ),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    requirement_id = Column(
        Integer, ForeignKey("requirements.id", ondelete="CASCADE"), nullable=False
    )
    control_id = Column(Integer, ForeignKey("controls.id"), nullable=False)
    similarity_score = Column(Float, default=0.0)  # 1.0 for keyword, cosine afterwards
    source = Column(Enum(*MAPPING_SOURCES, name="mapping_source"), nullable=False)
    requirement = relationship("Requirement", back_populates="control_links")
    control = relationship("Control")
