"""
SQLAlchemy models for the migration ledger.

This module defines the tables that track ignores, issues, projects and
planned policies as they move through gather, plan, execute, retest and
cleanup, plus organization metadata and the collection metadata singleton.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Ignore(Base):
    """
    A legacy ignore collected from a project.

    Progress columns are advanced by the plan, execute and cleanup phases.
    ``original_state`` is the JSON snapshot taken on first collection and is
    never rewritten.
    """

    __tablename__ = "ignores"

    id: Mapped[str] = mapped_column(String(255), primary_key=True, comment="Ignore id (issue id)")
    issue_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    org_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    project_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    ignore_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="", comment="wont-fix, not-vulnerable, temporary"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    asset_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
        index=True,
        comment="Grouping key back-filled from issues",
    )
    original_state: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Progress
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    migrated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    policy_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="External id of the created policy"
    )
    internal_policy_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True, comment="policies.internal_id of the plan"
    )
    selected_for_migration: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_ignores_org_asset_key", "org_id", "asset_key"),
        Index("idx_ignores_org_project_issue", "org_id", "project_id", "issue_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Ignore(id='{self.id}', org_id='{self.org_id}', type='{self.ignore_type}', "
            f"asset_key='{self.asset_key}')>"
        )


class Issue(Base):
    """
    A Snyk Code finding, kept only to back-fill ``Ignore.asset_key``.
    """

    __tablename__ = "issues"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    project_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    asset_key: Mapped[str] = mapped_column(String(255), nullable=False, default="", index=True)
    project_key: Mapped[str] = mapped_column(
        String(255), nullable=False, default="", comment="Legacy-compatible key, matches issue_id"
    )
    original_state: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        Index("idx_issues_org_project_key", "org_id", "project_id", "project_key"),
    )

    def __repr__(self) -> str:
        return f"<Issue(id='{self.id}', org_id='{self.org_id}', asset_key='{self.asset_key}')>"


class Project(Base):
    """
    A scanned project. CLI-origin projects are never retested.
    """

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    target_information: Mapped[str] = mapped_column(
        Text, nullable=False, default="", comment="JSON target descriptor, empty if unresolved"
    )
    retested_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_cli_project: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Project(id='{self.id}', org_id='{self.org_id}', name='{self.name}')>"


class Policy(Base):
    """
    One planned policy per (org, asset key).

    Created by plan, stamped with ``external_id`` by execute, and deleted
    and recreated when the org is re-planned.
    """

    __tablename__ = "policies"

    internal_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    asset_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    policy_type: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    source_ignores: Mapped[str] = mapped_column(
        Text, nullable=False, default="", comment="Comma-joined source ignore ids"
    )
    external_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (UniqueConstraint("org_id", "asset_key", name="uq_policies_org_asset_key"),)

    @property
    def source_ignore_ids(self) -> list[str]:
        return [ignore_id for ignore_id in self.source_ignores.split(",") if ignore_id]

    def __repr__(self) -> str:
        return (
            f"<Policy(internal_id='{self.internal_id}', org_id='{self.org_id}', "
            f"asset_key='{self.asset_key}', external_id={self.external_id!r})>"
        )


class Organization(Base):
    """
    Organization metadata recorded for group runs.
    """

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    slug: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    group_id: Mapped[str] = mapped_column(String(64), nullable=False, default="", index=True)
    is_personal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    access_requests_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Organization(id='{self.id}', slug='{self.slug}')>"


class CollectionMetadata(Base):
    """
    Singleton row describing the last completed collection.
    """

    __tablename__ = "collection_metadata"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    collection_completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    collection_version: Mapped[str] = mapped_column(String(50), nullable=False)
    api_version: Mapped[str] = mapped_column(String(50), nullable=False)

    __table_args__ = (CheckConstraint("id = 1", name="ck_collection_metadata_singleton"),)

    def __repr__(self) -> str:
        return (
            f"<CollectionMetadata(completed_at={self.collection_completed_at}, "
            f"version='{self.collection_version}')>"
        )
