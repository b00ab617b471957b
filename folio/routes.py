"""
HTTP routes for the Folio API.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    Query,
    Request,
    UploadFile,
)

from folio import passwords
from folio.config import Settings, get_settings
from folio.content import (
    DEFAULT_PROJECT_STATUS,
    PROJECT_STATUSES,
    BlogChanges,
    Page,
    ProjectChanges,
    parse_bool,
    parse_string_list,
)
from folio.db import BlogRecord, DbClient, ProjectRecord, UserRecord
from folio.dependencies import get_db_client, get_media_client
from folio.errors import AuthError, NotFoundError, ValidationError
from folio.media import (
    MediaAsset,
    MediaClient,
    MediaConstraints,
    delete_media_quietly,
    image_constraints,
    video_constraints,
)
from folio.schemas import (
    AuthResponse,
    BlogListResponse,
    BlogOut,
    ContactOut,
    ContactRequest,
    ContactSubmitResponse,
    HealthResponse,
    LoginRequest,
    MessageResponse,
    ProjectListResponse,
    ProjectOut,
    RegisterRequest,
    UploadResponse,
    UserOut,
    validate_link,
)
from folio.tokens import get_current_user, issue_token

logger = logging.getLogger(__name__)

router = APIRouter()

BLOG_NOT_FOUND = "Blog not found or unauthorized"
PROJECT_NOT_FOUND = "Project not found or unauthorized"


def _required(value: Optional[str], field_name: str, *, strip: bool = True) -> str:
    if not (value or "").strip():
        raise ValidationError(f"{field_name} is required")
    return value.strip() if strip else value


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _page_size(limit: Optional[int], settings: Settings) -> int:
    return min(limit or settings.default_page_size, settings.max_page_size)


def _status(value: Optional[str]) -> Optional[str]:
    value = _optional_text(value)
    if value is not None and value not in PROJECT_STATUSES:
        raise ValidationError(
            "status must be one of: " + ", ".join(PROJECT_STATUSES)
        )
    return value


async def submitted_fields(request: Request) -> frozenset:
    """Names of the form fields present in the body, blank ones included."""
    form = await request.form()
    return frozenset(form.keys())


def _link_change(value: Optional[str], field_name: str, sent: frozenset) -> Optional[str]:
    """An omitted link stays as is, a blank one is cleared, anything else must be a URL."""
    if field_name in sent and not (value or "").strip():
        return ""
    return validate_link(value, field_name)


def _store_upload(
    media: MediaClient,
    upload: Optional[UploadFile],
    constraints: MediaConstraints,
) -> Optional[MediaAsset]:
    """Push an optional multipart file to the asset host."""
    if upload is None or not upload.filename:
        return None
    # One byte past the cap is enough to reject an oversized file.
    data = upload.file.read(constraints.max_bytes + 1)
    return media.upload(data, upload.filename, constraints)


def _blog_out(db: DbClient, blog: BlogRecord) -> BlogOut:
    names = db.get_usernames([blog.author_id])
    return BlogOut(**blog.as_dict(names.get(blog.author_id)))


def _project_out(db: DbClient, project: ProjectRecord) -> ProjectOut:
    names = db.get_usernames([project.author_id])
    return ProjectOut(**project.as_dict(names.get(project.author_id)))


def _blog_list(db: DbClient, page: Page[BlogRecord]) -> BlogListResponse:
    names = db.get_usernames(blog.author_id for blog in page.items)
    return BlogListResponse(
        blogs=[BlogOut(**blog.as_dict(names.get(blog.author_id))) for blog in page.items],
        pagination=page.as_dict(),
    )


def _project_list(db: DbClient, page: Page[ProjectRecord]) -> ProjectListResponse:
    names = db.get_usernames(project.author_id for project in page.items)
    return ProjectListResponse(
        projects=[
            ProjectOut(**project.as_dict(names.get(project.author_id)))
            for project in page.items
        ],
        pagination=page.as_dict(),
    )


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok")


# Users


@router.post("/user/register", response_model=AuthResponse, status_code=201)
def register_user(
    payload: RegisterRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    user = passwords.register(
        db,
        payload.userName,
        payload.password,
        payload.password2,
        rounds=settings.bcrypt_rounds,
    )
    return AuthResponse(
        message="User created successfully",
        token=issue_token(user, settings),
        user=UserOut(**user.public_dict()),
    )


@router.post("/user/login", response_model=AuthResponse)
def login_user(
    payload: LoginRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    try:
        user = passwords.verify(db, payload.userName, payload.password)
    except (NotFoundError, AuthError) as exc:
        logger.info("Login failed for %s: %s", payload.userName, exc.message)
        raise AuthError("Invalid credentials") from exc
    return AuthResponse(
        message="Login successful",
        token=issue_token(user, settings),
        user=UserOut(**user.public_dict()),
    )


@router.get("/user/me", response_model=UserOut)
def current_user(user: UserRecord = Depends(get_current_user)):
    return UserOut(**user.public_dict())


# Contact form


@router.post("/contact/submit", response_model=ContactSubmitResponse, status_code=201)
def submit_contact(payload: ContactRequest, db: DbClient = Depends(get_db_client)):
    contact = db.save_contact(payload.name, str(payload.email), payload.reason)
    return ContactSubmitResponse(
        message="Contact submitted successfully",
        contact=ContactOut(**contact.as_dict()),
    )


@router.get("/contact/all", response_model=list[ContactOut])
def list_contacts(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    return [ContactOut(**contact.as_dict()) for contact in db.list_contacts()]


# Blogs


@router.get("/blogs", response_model=BlogListResponse)
def list_blogs(
    published: str = Query("true", pattern="^(true|false|all)$"),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    published_filter = None if published == "all" else published == "true"
    result = db.list_blogs(
        published=published_filter,
        search=_optional_text(search),
        page=page,
        limit=_page_size(limit, settings),
    )
    return _blog_list(db, result)


@router.get("/blogs/mine", response_model=BlogListResponse)
def list_my_blogs(
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    result = db.list_blogs(
        published=None,
        author_id=user.id,
        search=_optional_text(search),
        page=page,
        limit=_page_size(limit, settings),
    )
    return _blog_list(db, result)


@router.get("/blogs/{blog_id}", response_model=BlogOut)
def get_blog(blog_id: str, db: DbClient = Depends(get_db_client)):
    blog = db.get_blog(blog_id)
    if not blog:
        raise NotFoundError("Blog not found")
    return _blog_out(db, blog)


@router.post("/blogs", response_model=BlogOut, status_code=201)
def create_blog(
    title: str = Form(...),
    content: str = Form(...),
    excerpt: Optional[str] = Form(None),
    published: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    featured_image: Optional[UploadFile] = File(None, alias="featuredImage"),
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    media: MediaClient = Depends(get_media_client),
    settings: Settings = Depends(get_settings),
):
    draft = BlogRecord.new(
        title=_required(title, "title"),
        content=_required(content, "content", strip=False),
        author_id=user.id,
        excerpt=_optional_text(excerpt),
        published=bool(parse_bool(published)),
        tags=parse_string_list(tags),
    )
    image = _store_upload(media, featured_image, image_constraints(settings))
    if image:
        draft.featured_image = image.url
    try:
        blog = db.create_blog(draft)
    except Exception:
        delete_media_quietly(media, draft.featured_image)
        raise
    logger.info("User %s created blog %s", user.id, blog.id)
    return _blog_out(db, blog)


@router.put("/blogs/{blog_id}", response_model=BlogOut)
def update_blog(
    blog_id: str,
    background_tasks: BackgroundTasks,
    title: Optional[str] = Form(None),
    content: Optional[str] = Form(None),
    excerpt: Optional[str] = Form(None),
    published: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    featured_image: Optional[UploadFile] = File(None, alias="featuredImage"),
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    media: MediaClient = Depends(get_media_client),
    settings: Settings = Depends(get_settings),
):
    existing = db.get_blog(blog_id)
    if not existing or existing.author_id != user.id:
        raise NotFoundError(BLOG_NOT_FOUND)
    previous_image = existing.featured_image

    changes = BlogChanges(
        title=None if title is None else _required(title, "title"),
        content=None if content is None else _required(content, "content", strip=False),
        excerpt=_optional_text(excerpt),
        published=parse_bool(published),
        tags=parse_string_list(tags),
    )
    image = _store_upload(media, featured_image, image_constraints(settings))
    if image:
        changes.featured_image = image.url

    blog = db.update_blog(blog_id, user.id, changes)
    if not blog:
        delete_media_quietly(media, changes.featured_image)
        raise NotFoundError(BLOG_NOT_FOUND)
    if image and previous_image and previous_image != image.url:
        background_tasks.add_task(delete_media_quietly, media, previous_image)
    return _blog_out(db, blog)


@router.delete("/blogs/{blog_id}", response_model=MessageResponse)
def delete_blog(
    blog_id: str,
    background_tasks: BackgroundTasks,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    media: MediaClient = Depends(get_media_client),
):
    blog = db.delete_blog(blog_id, user.id)
    if not blog:
        raise NotFoundError(BLOG_NOT_FOUND)
    if blog.featured_image:
        background_tasks.add_task(delete_media_quietly, media, blog.featured_image)
    logger.info("User %s deleted blog %s", user.id, blog_id)
    return MessageResponse(message="Blog deleted successfully")


# Projects


@router.get("/projects", response_model=ProjectListResponse)
def list_projects(
    status: Optional[str] = Query(None, pattern="^(completed|in-progress|planned)$"),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    result = db.list_projects(
        status=status,
        search=_optional_text(search),
        page=page,
        limit=_page_size(limit, settings),
    )
    return _project_list(db, result)


@router.get("/projects/mine", response_model=ProjectListResponse)
def list_my_projects(
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    result = db.list_projects(
        author_id=user.id,
        search=_optional_text(search),
        page=page,
        limit=_page_size(limit, settings),
    )
    return _project_list(db, result)


@router.get("/projects/{project_id}", response_model=ProjectOut)
def get_project(project_id: str, db: DbClient = Depends(get_db_client)):
    project = db.get_project(project_id)
    if not project:
        raise NotFoundError("Project not found")
    return _project_out(db, project)


@router.post("/projects", response_model=ProjectOut, status_code=201)
def create_project(
    title: str = Form(...),
    description: str = Form(...),
    project_url: Optional[str] = Form(None, alias="projectUrl"),
    github_url: Optional[str] = Form(None, alias="githubUrl"),
    features: Optional[str] = Form(None),
    technologies: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    project_video: Optional[UploadFile] = File(None, alias="projectVideo"),
    video: Optional[UploadFile] = File(None),
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    media: MediaClient = Depends(get_media_client),
    settings: Settings = Depends(get_settings),
):
    draft = ProjectRecord.new(
        title=_required(title, "title"),
        description=_required(description, "description"),
        author_id=user.id,
        project_url=validate_link(project_url, "projectUrl"),
        github_url=validate_link(github_url, "githubUrl"),
        features=parse_string_list(features),
        technologies=parse_string_list(technologies),
        status=_status(status) or DEFAULT_PROJECT_STATUS,
    )
    clip = _store_upload(media, project_video or video, video_constraints(settings))
    if clip:
        draft.video_url = clip.url
    try:
        project = db.create_project(draft)
    except Exception:
        delete_media_quietly(media, draft.video_url)
        raise
    logger.info("User %s created project %s", user.id, project.id)
    return _project_out(db, project)


@router.put("/projects/{project_id}", response_model=ProjectOut)
def update_project(
    project_id: str,
    background_tasks: BackgroundTasks,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    project_url: Optional[str] = Form(None, alias="projectUrl"),
    github_url: Optional[str] = Form(None, alias="githubUrl"),
    features: Optional[str] = Form(None),
    technologies: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    project_video: Optional[UploadFile] = File(None, alias="projectVideo"),
    video: Optional[UploadFile] = File(None),
    sent: frozenset = Depends(submitted_fields),
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    media: MediaClient = Depends(get_media_client),
    settings: Settings = Depends(get_settings),
):
    existing = db.get_project(project_id)
    if not existing or existing.author_id != user.id:
        raise NotFoundError(PROJECT_NOT_FOUND)
    previous_video = existing.video_url

    changes = ProjectChanges(
        title=None if title is None else _required(title, "title"),
        description=(
            None if description is None else _required(description, "description")
        ),
        project_url=_link_change(project_url, "projectUrl", sent),
        github_url=_link_change(github_url, "githubUrl", sent),
        features=parse_string_list(features),
        technologies=parse_string_list(technologies),
        status=_status(status),
    )
    clip = _store_upload(media, project_video or video, video_constraints(settings))
    if clip:
        changes.video_url = clip.url

    project = db.update_project(project_id, user.id, changes)
    if not project:
        delete_media_quietly(media, changes.video_url)
        raise NotFoundError(PROJECT_NOT_FOUND)
    if clip and previous_video and previous_video != clip.url:
        background_tasks.add_task(delete_media_quietly, media, previous_video)
    return _project_out(db, project)


@router.delete("/projects/{project_id}", response_model=MessageResponse)
def delete_project(
    project_id: str,
    background_tasks: BackgroundTasks,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    media: MediaClient = Depends(get_media_client),
):
    project = db.delete_project(project_id, user.id)
    if not project:
        raise NotFoundError(PROJECT_NOT_FOUND)
    if project.video_url:
        background_tasks.add_task(delete_media_quietly, media, project.video_url)
    logger.info("User %s deleted project %s", user.id, project_id)
    return MessageResponse(message="Project deleted successfully")


# Standalone uploads


@router.post("/upload/image", response_model=UploadResponse, status_code=201)
def upload_image(
    image: UploadFile = File(...),
    user: UserRecord = Depends(get_current_user),
    media: MediaClient = Depends(get_media_client),
    settings: Settings = Depends(get_settings),
):
    asset = _store_upload(media, image, image_constraints(settings))
    if not asset:
        raise ValidationError("No file uploaded")
    return UploadResponse(**asset.as_dict())


@router.post("/upload/video", response_model=UploadResponse, status_code=201)
def upload_video(
    video: UploadFile = File(...),
    user: UserRecord = Depends(get_current_user),
    media: MediaClient = Depends(get_media_client),
    settings: Settings = Depends(get_settings),
):
    asset = _store_upload(media, video, video_constraints(settings))
    if not asset:
        raise ValidationError("No file uploaded")
    return UploadResponse(**asset.as_dict())
