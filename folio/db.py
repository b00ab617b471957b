"""
Database abstraction: a SQLAlchemy-backed store and an in-memory test implementation.

Both implementations hold users, contact submissions, blog posts and
projects. Update and delete calls take the caller's user id and only touch a
record whose author matches, returning None otherwise so callers cannot tell a
missing record from someone else's.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    func,
    or_,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from folio.content import (
    DEFAULT_PROJECT_STATUS,
    BlogChanges,
    Page,
    ProjectChanges,
    derive_excerpt,
    estimate_read_time,
    matches_search,
    offset_for,
)
from folio.errors import ConflictError


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class UserRecord:
    id: str
    user_name: str
    password_hash: str
    created_at: datetime = field(default_factory=_now)

    def public_dict(self) -> dict:
        return {
            "id": self.id,
            "userName": self.user_name,
            "createdAt": self.created_at,
        }


@dataclass
class ContactRecord:
    id: str
    name: str
    email: str
    reason: str
    date: datetime = field(default_factory=_now)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "reason": self.reason,
            "date": self.date,
        }


@dataclass
class BlogRecord:
    id: str
    title: str
    content: str
    author_id: str
    excerpt: str = ""
    read_time: int = 0
    featured_image: Optional[str] = None
    published: bool = False
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @classmethod
    def new(
        cls,
        *,
        title: str,
        content: str,
        author_id: str,
        excerpt: Optional[str] = None,
        featured_image: Optional[str] = None,
        published: bool = False,
        tags: Optional[list[str]] = None,
    ) -> "BlogRecord":
        now = _now()
        return cls(
            id=_new_id(),
            title=title,
            content=content,
            author_id=author_id,
            excerpt=derive_excerpt(excerpt if excerpt is not None else content),
            read_time=estimate_read_time(content),
            featured_image=featured_image,
            published=published,
            tags=list(tags or []),
            created_at=now,
            updated_at=now,
        )

    def as_dict(self, author_name: Optional[str] = None) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "excerpt": self.excerpt,
            "readTime": self.read_time,
            "featuredImage": self.featured_image,
            "published": self.published,
            "tags": list(self.tags),
            "author": {"id": self.author_id, "userName": author_name},
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class ProjectRecord:
    id: str
    title: str
    description: str
    author_id: str
    video_url: Optional[str] = None
    project_url: Optional[str] = None
    github_url: Optional[str] = None
    features: list[str] = field(default_factory=list)
    technologies: list[str] = field(default_factory=list)
    status: str = DEFAULT_PROJECT_STATUS
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @classmethod
    def new(cls, *, title: str, description: str, author_id: str, **fields) -> "ProjectRecord":
        now = _now()
        return cls(
            id=_new_id(),
            title=title,
            description=description,
            author_id=author_id,
            created_at=now,
            updated_at=now,
            **{key: value for key, value in fields.items() if value is not None},
        )

    def as_dict(self, author_name: Optional[str] = None) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "videoUrl": self.video_url,
            "projectUrl": self.project_url,
            "githubUrl": self.github_url,
            "features": list(self.features),
            "technologies": list(self.technologies),
            "status": self.status,
            "author": {"id": self.author_id, "userName": author_name},
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


class DbClient(Protocol):
    """Interface for database access."""

    def create_user(self, user_name: str, password_hash: str) -> UserRecord:
        ...

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    def get_user_by_username(self, user_name: str) -> Optional[UserRecord]:
        ...

    def get_usernames(self, user_ids: Iterable[str]) -> Dict[str, str]:
        ...

    def save_contact(self, name: str, email: str, reason: str) -> ContactRecord:
        ...

    def list_contacts(self) -> list[ContactRecord]:
        ...

    def create_blog(self, blog: BlogRecord) -> BlogRecord:
        ...

    def get_blog(self, blog_id: str) -> Optional[BlogRecord]:
        ...

    def list_blogs(
        self,
        *,
        published: Optional[bool] = True,
        author_id: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[BlogRecord]:
        ...

    def update_blog(
        self, blog_id: str, author_id: str, changes: BlogChanges
    ) -> Optional[BlogRecord]:
        ...

    def delete_blog(self, blog_id: str, author_id: str) -> Optional[BlogRecord]:
        ...

    def create_project(self, project: ProjectRecord) -> ProjectRecord:
        ...

    def get_project(self, project_id: str) -> Optional[ProjectRecord]:
        ...

    def list_projects(
        self,
        *,
        status: Optional[str] = None,
        author_id: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[ProjectRecord]:
        ...

    def update_project(
        self, project_id: str, author_id: str, changes: ProjectChanges
    ) -> Optional[ProjectRecord]:
        ...

    def delete_project(
        self, project_id: str, author_id: str
    ) -> Optional[ProjectRecord]:
        ...


def _newest_first(records):
    # Reverse a stable ascending sort so records created in the same instant
    # still come back newest insert first.
    return list(reversed(sorted(records, key=lambda r: r.created_at)))


def _slice(records: list, page: int, limit: int) -> Page:
    offset = offset_for(page, limit)
    return Page(
        items=[replace(record) for record in records[offset : offset + limit]],
        total=len(records),
        page=page,
        limit=limit,
    )


class InMemoryDbClient:
    """
    Simple in-memory database for development and tests.

    Blog and project reads hand out copies, so callers see the same detached
    records the SQL store returns.
    """

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.contacts: Dict[str, ContactRecord] = {}
        self.blogs: Dict[str, BlogRecord] = {}
        self.projects: Dict[str, ProjectRecord] = {}

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.users.clear()
        self.contacts.clear()
        self.blogs.clear()
        self.projects.clear()

    def create_user(self, user_name: str, password_hash: str) -> UserRecord:
        if self.get_user_by_username(user_name):
            raise ConflictError("Username already exists")
        record = UserRecord(
            id=_new_id(), user_name=user_name, password_hash=password_hash
        )
        self.users[record.id] = record
        return record

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    def get_user_by_username(self, user_name: str) -> Optional[UserRecord]:
        for user in self.users.values():
            if user.user_name == user_name:
                return user
        return None

    def get_usernames(self, user_ids: Iterable[str]) -> Dict[str, str]:
        return {
            user_id: self.users[user_id].user_name
            for user_id in set(user_ids)
            if user_id in self.users
        }

    def save_contact(self, name: str, email: str, reason: str) -> ContactRecord:
        record = ContactRecord(id=_new_id(), name=name, email=email, reason=reason)
        self.contacts[record.id] = record
        return record

    def list_contacts(self) -> list[ContactRecord]:
        return list(reversed(sorted(self.contacts.values(), key=lambda c: c.date)))

    def create_blog(self, blog: BlogRecord) -> BlogRecord:
        self.blogs[blog.id] = replace(blog)
        return replace(blog)

    def get_blog(self, blog_id: str) -> Optional[BlogRecord]:
        blog = self.blogs.get(blog_id)
        return replace(blog) if blog else None

    def list_blogs(
        self,
        *,
        published: Optional[bool] = True,
        author_id: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[BlogRecord]:
        records = [
            blog
            for blog in self.blogs.values()
            if (published is None or blog.published == published)
            and (author_id is None or blog.author_id == author_id)
            and (
                not search
                or matches_search(search, blog.title, blog.content, *blog.tags)
            )
        ]
        return _slice(_newest_first(records), page, limit)

    def update_blog(
        self, blog_id: str, author_id: str, changes: BlogChanges
    ) -> Optional[BlogRecord]:
        blog = self.blogs.get(blog_id)
        if not blog or blog.author_id != author_id:
            return None
        for key, value in changes.resolved().items():
            setattr(blog, key, value)
        blog.updated_at = _now()
        return replace(blog)

    def delete_blog(self, blog_id: str, author_id: str) -> Optional[BlogRecord]:
        blog = self.blogs.get(blog_id)
        if not blog or blog.author_id != author_id:
            return None
        return self.blogs.pop(blog_id)

    def create_project(self, project: ProjectRecord) -> ProjectRecord:
        self.projects[project.id] = replace(project)
        return replace(project)

    def get_project(self, project_id: str) -> Optional[ProjectRecord]:
        project = self.projects.get(project_id)
        return replace(project) if project else None

    def list_projects(
        self,
        *,
        status: Optional[str] = None,
        author_id: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[ProjectRecord]:
        records = [
            project
            for project in self.projects.values()
            if (status is None or project.status == status)
            and (author_id is None or project.author_id == author_id)
            and (
                not search
                or matches_search(
                    search,
                    project.title,
                    project.description,
                    *project.technologies,
                )
            )
        ]
        return _slice(_newest_first(records), page, limit)

    def update_project(
        self, project_id: str, author_id: str, changes: ProjectChanges
    ) -> Optional[ProjectRecord]:
        project = self.projects.get(project_id)
        if not project or project.author_id != author_id:
            return None
        for key, value in changes.resolved().items():
            setattr(project, key, value)
        project.updated_at = _now()
        return replace(project)

    def delete_project(
        self, project_id: str, author_id: str
    ) -> Optional[ProjectRecord]:
        project = self.projects.get(project_id)
        if not project or project.author_id != author_id:
            return None
        return self.projects.pop(project_id)


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _ilike(column, term: str):
    return func.lower(column).like(_like_pattern(term.lower()), escape="\\")


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    # Users

    def _to_user_record(self, row: "UserRow") -> UserRecord:
        return UserRecord(
            id=row.id,
            user_name=row.user_name,
            password_hash=row.password_hash,
            created_at=_aware(row.created_at),
        )

    def create_user(self, user_name: str, password_hash: str) -> UserRecord:
        with self.Session() as session:
            row = UserRow(
                id=_new_id(),
                user_name=user_name,
                password_hash=password_hash,
                created_at=_now(),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("Username already exists") from exc
            return self._to_user_record(row)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user_record(row) if row else None

    def get_user_by_username(self, user_name: str) -> Optional[UserRecord]:
        with self.Session() as session:
            stmt = select(UserRow).where(UserRow.user_name == user_name)
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_user_record(row) if row else None

    def get_usernames(self, user_ids: Iterable[str]) -> Dict[str, str]:
        ids = set(user_ids)
        if not ids:
            return {}
        with self.Session() as session:
            stmt = select(UserRow.id, UserRow.user_name).where(UserRow.id.in_(ids))
            return {user_id: name for user_id, name in session.execute(stmt)}

    # Contacts

    def save_contact(self, name: str, email: str, reason: str) -> ContactRecord:
        with self.Session() as session:
            row = ContactRow(
                id=_new_id(), name=name, email=email, reason=reason, date=_now()
            )
            session.add(row)
            session.commit()
            return ContactRecord(
                id=row.id,
                name=row.name,
                email=row.email,
                reason=row.reason,
                date=_aware(row.date),
            )

    def list_contacts(self) -> list[ContactRecord]:
        with self.Session() as session:
            rows = session.query(ContactRow).order_by(ContactRow.date.desc()).all()
            return [
                ContactRecord(
                    id=row.id,
                    name=row.name,
                    email=row.email,
                    reason=row.reason,
                    date=_aware(row.date),
                )
                for row in rows
            ]

    # Blogs

    def _to_blog_record(self, row: "BlogRow") -> BlogRecord:
        return BlogRecord(
            id=row.id,
            title=row.title,
            content=row.content,
            author_id=row.author_id,
            excerpt=row.excerpt or "",
            read_time=row.read_time or 0,
            featured_image=row.featured_image,
            published=bool(row.published),
            tags=list(row.tags or []),
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    def create_blog(self, blog: BlogRecord) -> BlogRecord:
        with self.Session() as session:
            row = BlogRow(
                id=blog.id,
                title=blog.title,
                content=blog.content,
                author_id=blog.author_id,
                excerpt=blog.excerpt,
                read_time=blog.read_time,
                featured_image=blog.featured_image,
                published=blog.published,
                tags=list(blog.tags),
                created_at=blog.created_at,
                updated_at=blog.updated_at,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_blog_record(row)

    def get_blog(self, blog_id: str) -> Optional[BlogRecord]:
        with self.Session() as session:
            row = session.get(BlogRow, blog_id)
            return self._to_blog_record(row) if row else None

    def list_blogs(
        self,
        *,
        published: Optional[bool] = True,
        author_id: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[BlogRecord]:
        filters = []
        if published is not None:
            filters.append(BlogRow.published == published)
        if author_id is not None:
            filters.append(BlogRow.author_id == author_id)
        if search:
            filters.append(
                or_(
                    _ilike(BlogRow.title, search),
                    _ilike(BlogRow.content, search),
                    BlogRow.tag_rows.any(_ilike(BlogTagRow.value, search)),
                )
            )
        return self._page(BlogRow, filters, page, limit, self._to_blog_record)

    def update_blog(
        self, blog_id: str, author_id: str, changes: BlogChanges
    ) -> Optional[BlogRecord]:
        with self.Session() as session:
            row = self._owned(session, BlogRow, blog_id, author_id)
            if not row:
                return None
            for key, value in changes.resolved().items():
                setattr(row, key, value)
            row.updated_at = _now()
            session.commit()
            session.refresh(row)
            return self._to_blog_record(row)

    def delete_blog(self, blog_id: str, author_id: str) -> Optional[BlogRecord]:
        with self.Session() as session:
            row = self._owned(session, BlogRow, blog_id, author_id)
            if not row:
                return None
            record = self._to_blog_record(row)
            session.delete(row)
            session.commit()
            return record

    # Projects

    def _to_project_record(self, row: "ProjectRow") -> ProjectRecord:
        return ProjectRecord(
            id=row.id,
            title=row.title,
            description=row.description,
            author_id=row.author_id,
            video_url=row.video_url,
            project_url=row.project_url,
            github_url=row.github_url,
            features=list(row.features or []),
            technologies=list(row.technologies or []),
            status=row.status,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    def create_project(self, project: ProjectRecord) -> ProjectRecord:
        with self.Session() as session:
            row = ProjectRow(
                id=project.id,
                title=project.title,
                description=project.description,
                author_id=project.author_id,
                video_url=project.video_url,
                project_url=project.project_url,
                github_url=project.github_url,
                features=list(project.features),
                technologies=list(project.technologies),
                status=project.status,
                created_at=project.created_at,
                updated_at=project.updated_at,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_project_record(row)

    def get_project(self, project_id: str) -> Optional[ProjectRecord]:
        with self.Session() as session:
            row = session.get(ProjectRow, project_id)
            return self._to_project_record(row) if row else None

    def list_projects(
        self,
        *,
        status: Optional[str] = None,
        author_id: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[ProjectRecord]:
        filters = []
        if status is not None:
            filters.append(ProjectRow.status == status)
        if author_id is not None:
            filters.append(ProjectRow.author_id == author_id)
        if search:
            filters.append(
                or_(
                    _ilike(ProjectRow.title, search),
                    _ilike(ProjectRow.description, search),
                    ProjectRow.technology_rows.any(
                        _ilike(ProjectTechnologyRow.value, search)
                    ),
                )
            )
        return self._page(ProjectRow, filters, page, limit, self._to_project_record)

    def update_project(
        self, project_id: str, author_id: str, changes: ProjectChanges
    ) -> Optional[ProjectRecord]:
        with self.Session() as session:
            row = self._owned(session, ProjectRow, project_id, author_id)
            if not row:
                return None
            for key, value in changes.resolved().items():
                setattr(row, key, value)
            row.updated_at = _now()
            session.commit()
            session.refresh(row)
            return self._to_project_record(row)

    def delete_project(
        self, project_id: str, author_id: str
    ) -> Optional[ProjectRecord]:
        with self.Session() as session:
            row = self._owned(session, ProjectRow, project_id, author_id)
            if not row:
                return None
            record = self._to_project_record(row)
            session.delete(row)
            session.commit()
            return record

    # Shared helpers

    def _owned(self, session: Session, model, record_id: str, author_id: str):
        stmt = select(model).where(model.id == record_id, model.author_id == author_id)
        return session.execute(stmt).scalar_one_or_none()

    def _page(self, model, filters: list, page: int, limit: int, convert) -> Page:
        with self.Session() as session:
            total = session.execute(
                select(func.count()).select_from(model).where(*filters)
            ).scalar_one()
            stmt = (
                select(model)
                .where(*filters)
                .order_by(model.created_at.desc())
                .offset(offset_for(page, limit))
                .limit(limit)
            )
            rows = session.execute(stmt).scalars().all()
            return Page(
                items=[convert(row) for row in rows],
                total=total,
                page=page,
                limit=limit,
            )


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True)
    user_name = Column(String(150), nullable=False, unique=True, index=True)
    password_hash = Column(String(200), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class ContactRow(Base):
    __tablename__ = "contacts"

    id = Column(String(32), primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(320), nullable=False)
    reason = Column(Text, nullable=False)
    date = Column(DateTime(timezone=True), nullable=False, index=True)


class BlogRow(Base):
    __tablename__ = "blogs"

    id = Column(String(32), primary_key=True)
    title = Column(String(300), nullable=False)
    content = Column(Text, nullable=False)
    excerpt = Column(Text, nullable=True)
    read_time = Column(Integer, nullable=False, default=0)
    featured_image = Column(String(1024), nullable=True)
    published = Column(Boolean, nullable=False, default=False, index=True)
    # Weak reference: users are never deleted, so no foreign key cascade.
    author_id = Column(String(32), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    tag_rows = relationship(
        "BlogTagRow",
        order_by="BlogTagRow.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def tags(self) -> list[str]:
        return [row.value for row in self.tag_rows]

    @tags.setter
    def tags(self, values: Iterable[str]) -> None:
        self.tag_rows = [
            BlogTagRow(position=position, value=value)
            for position, value in enumerate(values)
        ]


class ProjectRow(Base):
    __tablename__ = "projects"

    id = Column(String(32), primary_key=True)
    title = Column(String(300), nullable=False)
    description = Column(Text, nullable=False)
    video_url = Column(String(1024), nullable=True)
    project_url = Column(String(1024), nullable=True)
    github_url = Column(String(1024), nullable=True)
    features = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, index=True)
    author_id = Column(String(32), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    technology_rows = relationship(
        "ProjectTechnologyRow",
        order_by="ProjectTechnologyRow.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def technologies(self) -> list[str]:
        return [row.value for row in self.technology_rows]

    @technologies.setter
    def technologies(self, values: Iterable[str]) -> None:
        self.technology_rows = [
            ProjectTechnologyRow(position=position, value=value)
            for position, value in enumerate(values)
        ]


# One row per tag or technology, so search runs against each value rather
# than against serialized JSON.


class BlogTagRow(Base):
    __tablename__ = "blog_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    blog_id = Column(
        String(32), ForeignKey("blogs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False)
    value = Column(Text, nullable=False)


class ProjectTechnologyRow(Base):
    __tablename__ = "project_technologies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(
        String(32),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False)
    value = Column(Text, nullable=False)
