# models.py — Database models for the Foundry API
# - UUID (string) primary keys everywhere
# - Two-role system (admin, member)
# - Soft deletes on every tenant-owned table
# - Versioned JSON configuration blobs (processing config, schema definition,
#   API connection config)
# - Processing jobs carry an immutable configuration snapshot

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, BigInteger, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint, text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def _enum(enum_cls, name):
    # Persist enum values (not member names) so stored strings match the API
    return SQLEnum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e])


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    ADMIN = "admin"
    MEMBER = "member"


class ProjectStatus(str, PyEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class SourceType(str, PyEnum):
    FILE = "file"
    API = "api"


class SourceStatus(str, PyEnum):
    CONNECTED = "connected"
    CACHED = "cached"
    EXPIRED = "expired"
    ERROR = "error"


class JobTrigger(str, PyEnum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class JobStatus(str, PyEnum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class OutputFormat(str, PyEnum):
    CONVERSATIONAL_JSONL = "conversationalJsonl"
    QA_JSON = "qaJson"
    STRUCTURED_JSON = "structuredJson"


# ============================================================
# ORGANISATIONS
# ============================================================

class Organisation(Base):
    __tablename__ = "organisations"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    users = relationship("User", back_populates="organisation")
    projects = relationship("Project", back_populates="organisation")

    __table_args__ = (
        Index(
            "idx_orgs_slug_active", "slug", unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        Index("idx_orgs_deleted_at", "deleted_at"),
    )


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    organisation_id = Column(
        String, ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    email = Column(String, nullable=False, index=True)
    password_hash = Column(String, nullable=False, default="")
    name = Column(String, nullable=False, default="")
    role = Column(_enum(UserRole, "user_role"), default=UserRole.MEMBER, nullable=False)
    invite_token = Column(String, nullable=True, index=True)
    invite_token_expiry = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    organisation = relationship("Organisation", back_populates="users")

    __table_args__ = (
        Index(
            "idx_users_email_active", "email", unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        Index("idx_users_org_deleted", "organisation_id", "deleted_at"),
    )


# ============================================================
# CANONICAL SCHEMAS (global, not organisation scoped)
# ============================================================

class CanonicalSchema(Base):
    __tablename__ = "canonical_schemas"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    version = Column(Integer, nullable=False)
    schema_definition = Column(JSON, nullable=False)
    schema_definition_version = Column(Integer, nullable=False, default=1)
    description = Column(Text, nullable=False, default="")
    is_published = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("name", "version", name="uq_canonical_schema_name_version"),
    )


# ============================================================
# PROJECTS
# ============================================================

class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    organisation_id = Column(
        String, ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    created_by_user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    canonical_schema_id = Column(
        String, ForeignKey("canonical_schemas.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(_enum(ProjectStatus, "project_status"), default=ProjectStatus.DRAFT, nullable=False)
    processing_config = Column(JSON, nullable=True)
    processing_config_version = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    organisation = relationship("Organisation", back_populates="projects")
    canonical_schema = relationship("CanonicalSchema")

    __table_args__ = (
        Index(
            "idx_projects_org_name_active", "organisation_id", "name", unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        Index("idx_projects_org_deleted", "organisation_id", "deleted_at"),
        Index("idx_projects_status", "status", "deleted_at"),
    )


# ============================================================
# SOURCES (file XOR api payload, keyed by source_type)
# ============================================================

class Source(Base):
    __tablename__ = "sources"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    source_type = Column(_enum(SourceType, "source_type"), nullable=False)
    # file branch
    file_upload_path = Column(String, nullable=True)
    file_mime_type = Column(String, nullable=True)
    file_size_bytes = Column(BigInteger, nullable=True)
    # api branch
    api_connection_config = Column(JSON, nullable=True)
    api_connection_config_version = Column(Integer, nullable=True)
    status = Column(_enum(SourceStatus, "source_status"), default=SourceStatus.CONNECTED, nullable=False)
    cached_data_path = Column(String, nullable=True)
    cached_at = Column(DateTime(timezone=True), nullable=True)
    cache_expiry_date = Column(DateTime(timezone=True), nullable=True, index=True)
    record_count = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    project = relationship("Project")

    __table_args__ = (
        Index("idx_sources_project", "project_id", "deleted_at"),
        Index("idx_sources_status", "status", "deleted_at"),
    )


# ============================================================
# PROCESSING JOBS (config_snapshot is write-once)
# ============================================================

class ProcessingJob(Base):
    __tablename__ = "processing_jobs"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    triggered_by = Column(_enum(JobTrigger, "job_trigger"), nullable=False, default=JobTrigger.MANUAL)
    triggered_by_user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(_enum(JobStatus, "processing_job_status"), nullable=False, default=JobStatus.QUEUED)
    config_snapshot = Column(JSON, nullable=False)
    config_snapshot_version = Column(Integer, nullable=False, default=1)
    input_record_count = Column(Integer, nullable=True)
    output_record_count = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    project = relationship("Project")

    __table_args__ = (
        Index("idx_processing_jobs_project", "project_id", "deleted_at"),
        Index("idx_processing_jobs_status", "status", "deleted_at"),
    )


# ============================================================
# DATASETS (created by the processing worker only)
# ============================================================

class Dataset(Base):
    __tablename__ = "datasets"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    processing_job_id = Column(
        String, ForeignKey("processing_jobs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = Column(String, nullable=False)
    output_format = Column(_enum(OutputFormat, "output_format"), nullable=False)
    output_storage_path = Column(String, nullable=False)
    record_count = Column(Integer, nullable=False, default=0)
    file_size_bytes = Column(BigInteger, nullable=False, default=0)
    lineage_data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    project = relationship("Project")
    processing_job = relationship("ProcessingJob")

    __table_args__ = (
        Index("idx_datasets_project", "project_id", "deleted_at"),
        Index("idx_datasets_output_format", "output_format", "deleted_at"),
    )
