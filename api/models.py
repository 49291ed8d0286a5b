"""
API request and response models for the login center REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py,
projects/models.py and oauth2/models.py, which own the internal domain
representation. Route handlers map between the two.

Wire format: client SDKs speak camelCase (userId, tokenVersion, isPublic), so
every model uses the to_camel alias generator. populate_by_name lets Python
code build models with snake_case field names.
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from auth.models import User
from oauth2.models import SetupCode
from projects.models import MemberRole, Project, ProjectMember, ProjectSession, Visibility

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)
_CAMEL_FROZEN = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Client-facing request models (x-api-key or anonymous)
# ---------------------------------------------------------------------------


class TokenExchangeRequest(BaseModel):
    """Request body for POST /api/v1/token.

    Both fields are optional at the schema level so a missing code is reported
    by the exchange service (with an audit entry) rather than by validation.
    redirect_uri is accepted in its OAuth2 spelling as well as camelCase.
    """

    model_config = _CAMEL

    code: Optional[str] = None
    redirect_uri: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("redirect_uri", "redirectUri"),
    )


class SessionVerifyRequest(BaseModel):
    """Request body for POST /api/v1/session/verify.

    A missing, null or zero tokenVersion means the client never stored one;
    the route reads it as 1, the version every user starts at.
    """

    model_config = _CAMEL

    user_id: Optional[str] = None
    token_version: Optional[int] = None


class PublicSessionVerifyRequest(BaseModel):
    """Request body for POST /api/v1/public/session/verify."""

    model_config = _CAMEL

    token: Optional[str] = None


class ClaimRequest(BaseModel):
    """Request body for POST /api/v1/projects/claim."""

    model_config = _CAMEL

    setup_code: Optional[str] = None


# ---------------------------------------------------------------------------
# Project management request models (hub session)
# ---------------------------------------------------------------------------


class ProjectCreate(BaseModel):
    """Request body for POST /api/v1/projects."""

    model_config = _CAMEL

    name: str = Field(min_length=1, max_length=100)
    domain: Optional[str] = Field(default=None, max_length=255)
    visibility: Visibility = Visibility.PUBLIC


class VisibilityPatch(BaseModel):
    """Request body for PATCH /api/v1/project/{id}/visibility.

    Accepts {"isPublic": bool} or {"visibility": "public"|"restricted"}.
    """

    model_config = _CAMEL

    is_public: Optional[bool] = None
    visibility: Optional[Visibility] = None

    @model_validator(mode="after")
    def require_one(self) -> "VisibilityPatch":
        if self.is_public is None and self.visibility is None:
            raise ValueError("isPublic must be a boolean")
        return self

    def resolved(self) -> Visibility:
        if self.visibility is not None:
            return self.visibility
        return Visibility.PUBLIC if self.is_public else Visibility.RESTRICTED


class MemberAdd(BaseModel):
    """Request body for POST /api/v1/project/{id}/members."""

    model_config = _CAMEL

    email: str = Field(min_length=3, max_length=320)
    role: MemberRole = MemberRole.MEMBER


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Error envelope returned on 4xx/5xx responses: {"error": message, "code": code}."""

    model_config = ConfigDict(frozen=True)

    error: str
    code: str


class ProjectResponse(BaseModel):
    """A project as shown to its owner or members. The API key is never included."""

    model_config = _CAMEL_FROZEN

    id: str
    name: str
    slug: str
    domain: Optional[str]
    visibility: Visibility
    is_public: bool
    api_key_prefix: str
    owner_id: str
    is_owner: bool
    created_at: Optional[str]
    updated_at: Optional[str]

    @classmethod
    def from_project(cls, project: Project, viewer_id: str) -> "ProjectResponse":
        return cls(
            id=project.id,
            name=project.name,
            slug=project.slug,
            domain=project.domain,
            visibility=project.visibility,
            is_public=project.is_public,
            api_key_prefix=project.api_key_prefix,
            owner_id=project.owner_id,
            is_owner=project.owner_id == viewer_id,
            created_at=project.created_at,
            updated_at=project.updated_at,
        )


class ProjectCreatedResponse(ProjectResponse):
    """Returned once by POST /api/v1/projects. api_key is never shown again."""

    api_key: str

    @classmethod
    def from_new_project(cls, project: Project) -> "ProjectCreatedResponse":
        base = ProjectResponse.from_project(project, project.owner_id)
        return cls(**base.model_dump(), api_key=project.api_key)


class RotateKeyResponse(BaseModel):
    model_config = _CAMEL_FROZEN

    success: bool = True
    new_api_key: str
    project_name: str
    warning: str


class MemberResponse(BaseModel):
    model_config = _CAMEL_FROZEN

    id: str
    user_id: str
    email: Optional[str]
    name: Optional[str]
    role: MemberRole
    created_at: Optional[str]

    @classmethod
    def from_member(cls, member: ProjectMember) -> "MemberResponse":
        return cls(
            id=member.id,
            user_id=member.user_id,
            email=member.user_email,
            name=member.user_name,
            role=member.role,
            created_at=member.created_at,
        )


class SessionResponse(BaseModel):
    model_config = _CAMEL_FROZEN

    id: str
    user_id: str
    user_email: str
    user_name: Optional[str]
    user_agent: Optional[str]
    ip_address: Optional[str]
    last_seen_at: Optional[str]
    created_at: Optional[str]

    @classmethod
    def from_session(cls, session: ProjectSession) -> "SessionResponse":
        return cls(
            id=session.id,
            user_id=session.user_id,
            user_email=session.user_email,
            user_name=session.user_name,
            user_agent=session.user_agent,
            ip_address=session.ip_address,
            last_seen_at=session.last_seen_at,
            created_at=session.created_at,
        )


class SessionStats(BaseModel):
    model_config = _CAMEL_FROZEN

    total: int
    active_today: int
    active_this_week: int


class SessionListResponse(BaseModel):
    model_config = _CAMEL_FROZEN

    sessions: list[SessionResponse]
    stats: SessionStats


class SetupCodeResponse(BaseModel):
    """A setup code. The full code is shown, since it is only useful once."""

    model_config = _CAMEL_FROZEN

    id: str
    code: str
    expires_at: str
    created_at: str

    @classmethod
    def from_record(cls, record: SetupCode) -> "SetupCodeResponse":
        return cls(id=record.id, code=record.code, expires_at=record.expires_at, created_at=record.created_at)


class ClaimResponse(BaseModel):
    model_config = _CAMEL_FROZEN

    api_key: str
    slug: str
    center_url: str
    project_name: str
    project_id: str


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = _CAMEL_FROZEN

    user_id: str
    email: str
    name: Optional[str]
    image: Optional[str]
    role: str
    token_version: int
    oauth_provider: Optional[str]

    @classmethod
    def from_user(cls, user: User) -> "MeResponse":
        return cls(
            user_id=user.id,
            email=user.email,
            name=user.name,
            image=user.image,
            role=user.role,
            token_version=user.token_version,
            oauth_provider=user.oauth_provider,
        )


class OAuthProviderInfo(BaseModel):
    """One entry in GET /api/v1/auth/providers."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class HealthCheck(BaseModel):
    model_config = _CAMEL_FROZEN

    status: str
    latency_ms: Optional[int] = None
    message: Optional[str] = None


class HealthResponse(BaseModel):
    """Response for GET /api/health and /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str
    timestamp: str
    version: str
    checks: dict[str, HealthCheck]
