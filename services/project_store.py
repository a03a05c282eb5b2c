"""
Saved comic projects, stored with SQLAlchemy.

Projects are written once and deleted as a whole; there is no update.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from errors import PersistenceError
from models import Project, ProjectData

logger = logging.getLogger(__name__)

Base = declarative_base()


class ProjectRecord(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False, index=True)
    title = Column(String(300), nullable=False)
    script = Column(Text, nullable=False)
    art_style = Column(JSON, nullable=False)
    aspect_ratio = Column(String(8), nullable=False)
    characters = Column(JSON, nullable=False, default=list)
    scenes = Column(JSON, nullable=False, default=list)
    comic_pages = Column(JSON, nullable=False, default=list)
    cover_image_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<ProjectRecord(id={self.id}, user_id={self.user_id}, title={self.title})>"

    def to_project(self) -> Project:
        return Project(
            id=str(self.id),
            userId=self.user_id,
            title=self.title,
            script=self.script,
            artStyle=self.art_style,
            aspectRatio=self.aspect_ratio,
            characters=self.characters or [],
            scenes=self.scenes or [],
            comicPages=self.comic_pages or [],
            coverImageUrl=self.cover_image_url,
            createdAt=self.created_at,
        )


def _make_engine(database_url: str):
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every session sees an empty database.
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url)


class ProjectStore:
    def __init__(self, database_url: str):
        self.engine = _make_engine(database_url)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)

    def save_project(self, user_id: str, data: ProjectData) -> str:
        payload = data.model_dump(mode="json")
        record = ProjectRecord(
            user_id=user_id,
            title=payload["title"],
            script=payload["script"],
            art_style=payload["artStyle"],
            aspect_ratio=payload["aspectRatio"],
            characters=payload["characters"],
            scenes=payload["scenes"],
            comic_pages=payload["comicPages"],
            cover_image_url=payload["coverImageUrl"],
            created_at=datetime.now(timezone.utc),
        )
        try:
            with self.Session() as session:
                session.add(record)
                session.commit()
                project_id = str(record.id)
        except SQLAlchemyError as e:
            logger.error("Error saving project: %s", e)
            raise PersistenceError(f"Failed to save project: {e}") from e
        logger.info("Saved project %s for user %s", project_id, user_id)
        return project_id

    def list_projects(self, user_id: str) -> List[Project]:
        """Projects of one user, newest first."""
        try:
            with self.Session() as session:
                records = (
                    session.query(ProjectRecord)
                    .filter(ProjectRecord.user_id == user_id)
                    .order_by(ProjectRecord.created_at.desc(), ProjectRecord.id.desc())
                    .all()
                )
                return [r.to_project() for r in records]
        except SQLAlchemyError as e:
            logger.error("Error getting user projects: %s", e)
            raise PersistenceError(f"Failed to load projects: {e}") from e

    def get_project(self, project_id: str) -> Optional[Project]:
        record_id = _parse_id(project_id)
        if record_id is None:
            return None
        try:
            with self.Session() as session:
                record = session.get(ProjectRecord, record_id)
                return record.to_project() if record else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load project: {e}") from e

    def delete_project(self, project_id: str) -> None:
        record_id = _parse_id(project_id)
        if record_id is None:
            return
        try:
            with self.Session() as session:
                record = session.get(ProjectRecord, record_id)
                if record is not None:
                    session.delete(record)
                    session.commit()
        except SQLAlchemyError as e:
            logger.error("Error deleting project: %s", e)
            raise PersistenceError(f"Failed to delete project: {e}") from e


def _parse_id(project_id: str) -> Optional[int]:
    try:
        return int(project_id)
    except (TypeError, ValueError):
        return None
