"""HTTP route definitions for the billing access service."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from uuid import UUID

import jwt
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from ..config import get_settings
from ..domain.authorizer import AccessDecision, AccessGuard
from ..domain.contracts import AddMemberInput, AssignRoleInput
from ..domain.directory import TenantDirectory
from ..domain.errors import CrossTenantError, StorageUnavailableError
from ..domain.generator import BillGenerator
from ..domain.membership import Scope
from ..domain.service import MembershipService
from ..domain.tenant import Tenant
from ..security.identity import VerifiedPrincipal, resolve_caller
from ..security.tokens import decode_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")

bearer_scheme = HTTPBearer(auto_error=False)


class TenantResponse(BaseModel):
    """Serialised representation of a `Tenant`."""

    tenant_id: UUID
    name: str

    @classmethod
    def from_domain(cls, tenant: Tenant) -> "TenantResponse":
        return cls(tenant_id=tenant.tenant_id, name=tenant.name)


class HostListResponse(BaseModel):
    tenant_id: UUID
    hosts: list[str]


class RoleListResponse(BaseModel):
    """Role names the caller holds within a tenant."""

    tenant_id: UUID
    roles: list[str]


class MemberListResponse(BaseModel):
    scope: str
    scope_id: UUID | None = None
    principal_ids: list[UUID]


class AddMemberRequest(BaseModel):
    """Payload accepted when granting a principal membership."""

    principal_id: UUID


class MembershipResponse(BaseModel):
    scope: str
    scope_id: UUID | None
    principal_id: UUID
    created: bool


class RoleAssignmentRequest(BaseModel):
    principal_id: UUID
    role: str = Field(..., min_length=1, max_length=255)


class RoleAssignmentResponse(BaseModel):
    tenant_id: UUID
    principal_id: UUID
    role: str
    created: bool


class GenerateBillsRequest(BaseModel):
    """Optional overrides for a generator run."""

    as_of: date | None = None
    horizon_days: int | None = Field(default=None, ge=0, le=366)
    since: date | None = None


class GenerateBillsResponse(BaseModel):
    window_start: date
    window_end: date
    schedules: int
    created: int
    skipped: int
    invalid: int


def get_directory(request: Request) -> TenantDirectory:
    """Resolve the `TenantDirectory` stored on the FastAPI application state."""
    return request.app.state.tenant_directory


def get_guard(request: Request) -> AccessGuard:
    return request.app.state.access_guard


def get_membership_service(request: Request) -> MembershipService:
    return request.app.state.membership_service


def get_generator(request: Request) -> BillGenerator:
    return request.app.state.bill_generator


def get_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> UUID:
    """Verify the bearer token and return the caller id, answering 401 when absent."""
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required")
    try:
        claims = decode_access_token(credentials.credentials)
    except jwt.PyJWTError as exc:
        logger.warning("rejected bearer token: %s", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token") from exc
    caller_id = resolve_caller(VerifiedPrincipal(claims), claim=get_settings().caller_id_claim)
    if caller_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required")
    return caller_id


def _enforce(decision: AccessDecision) -> None:
    if decision is AccessDecision.not_found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if decision is AccessDecision.forbidden:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")


def _require_application_scope(guard: AccessGuard, caller_id: UUID) -> None:
    if not guard.authorizer.check_application_access(caller_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")


def _acting_tenant(directory: TenantDirectory, request: Request, tenant_id: UUID | None) -> Tenant:
    tenant = directory.resolve_acting_tenant(request, tenant_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="tenant not found")
    return tenant


@router.get("/tenants/current", response_model=TenantResponse)
def get_current_tenant(
    request: Request,
    directory: TenantDirectory = Depends(get_directory),
) -> TenantResponse:
    """Return the tenant owning the host this request was addressed to."""
    tenant = directory.resolve_current_tenant(request)
    if tenant is None:
        logger.warning("could not find tenant for host")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="tenant not found")
    return TenantResponse.from_domain(tenant)


@router.get("/tenants/authorized", response_model=list[TenantResponse])
def list_authorized_tenants(
    caller_id: UUID = Depends(get_caller),
    directory: TenantDirectory = Depends(get_directory),
    guard: AccessGuard = Depends(get_guard),
) -> list[TenantResponse]:
    """List every tenant for application members, otherwise the caller's own tenants."""
    member_id = None if guard.authorizer.check_application_access(caller_id) else caller_id
    return [TenantResponse.from_domain(tenant) for tenant in directory.list_tenants(member_id)]


@router.get("/tenants/{tenant_id}", response_model=TenantResponse)
def get_tenant(
    tenant_id: UUID,
    caller_id: UUID = Depends(get_caller),
    directory: TenantDirectory = Depends(get_directory),
    guard: AccessGuard = Depends(get_guard),
) -> TenantResponse:
    _enforce(guard.authorize_read(caller_id, Scope.TENANT, tenant_id))
    tenant = directory.resolve_tenant_by_id(tenant_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="tenant not found")
    return TenantResponse.from_domain(tenant)


@router.get("/tenants/{tenant_id}/hosts", response_model=HostListResponse)
def list_tenant_hosts(
    tenant_id: UUID,
    caller_id: UUID = Depends(get_caller),
    directory: TenantDirectory = Depends(get_directory),
    guard: AccessGuard = Depends(get_guard),
) -> HostListResponse:
    _enforce(guard.authorize_read(caller_id, Scope.TENANT, tenant_id))
    return HostListResponse(tenant_id=tenant_id, hosts=directory.list_hosts(tenant_id))


@router.get("/user-roles", response_model=RoleListResponse)
def list_user_roles(
    request: Request,
    tenant_id: UUID | None = Query(default=None),
    caller_id: UUID = Depends(get_caller),
    directory: TenantDirectory = Depends(get_directory),
    guard: AccessGuard = Depends(get_guard),
) -> RoleListResponse:
    """Return the caller's roles within the explicit or host-derived tenant."""
    tenant = _acting_tenant(directory, request, tenant_id)
    roles = guard.role_gate.tenant_roles(caller_id, tenant.tenant_id)
    return RoleListResponse(tenant_id=tenant.tenant_id, roles=sorted(roles))


@router.get("/accounts/{account_id}/members", response_model=MemberListResponse)
def list_account_members(
    account_id: UUID,
    caller_id: UUID = Depends(get_caller),
    guard: AccessGuard = Depends(get_guard),
    service: MembershipService = Depends(get_membership_service),
) -> MemberListResponse:
    _enforce(guard.authorize_read(caller_id, Scope.ACCOUNT, account_id))
    return MemberListResponse(
        scope=Scope.ACCOUNT.label,
        scope_id=account_id,
        principal_ids=service.list_members(Scope.ACCOUNT, account_id),
    )


@router.post(
    "/accounts/{account_id}/members",
    response_model=MembershipResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_account_member(
    account_id: UUID,
    payload: AddMemberRequest,
    request: Request,
    response: Response,
    tenant_id: UUID | None = Query(default=None),
    caller_id: UUID = Depends(get_caller),
    directory: TenantDirectory = Depends(get_directory),
    guard: AccessGuard = Depends(get_guard),
    service: MembershipService = Depends(get_membership_service),
) -> MembershipResponse:
    """Add a principal to an account owned by the acting tenant."""
    tenant = _acting_tenant(directory, request, tenant_id)
    _enforce(guard.authorize_write(caller_id, tenant.tenant_id, Scope.ACCOUNT, account_id))
    try:
        membership, created = service.add_account_member(
            tenant.tenant_id,
            AddMemberInput(principal_id=payload.principal_id, scope_id=account_id),
            actor=caller_id,
        )
    except ValueError as exc:
        raise _http_error_from_value_error(exc) from exc
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return MembershipResponse(
        scope=membership.scope.label,
        scope_id=membership.scope_id,
        principal_id=membership.principal_id,
        created=created,
    )


@router.delete("/accounts/{account_id}/members/{principal_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_account_member(
    account_id: UUID,
    principal_id: UUID,
    request: Request,
    tenant_id: UUID | None = Query(default=None),
    caller_id: UUID = Depends(get_caller),
    directory: TenantDirectory = Depends(get_directory),
    guard: AccessGuard = Depends(get_guard),
    service: MembershipService = Depends(get_membership_service),
) -> Response:
    tenant = _acting_tenant(directory, request, tenant_id)
    _enforce(guard.authorize_write(caller_id, tenant.tenant_id, Scope.ACCOUNT, account_id))
    try:
        service.remove_account_member(tenant.tenant_id, account_id, principal_id, actor=caller_id)
    except ValueError as exc:
        raise _http_error_from_value_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/tenants/{tenant_id}/members", response_model=MemberListResponse)
def list_tenant_members(
    tenant_id: UUID,
    caller_id: UUID = Depends(get_caller),
    guard: AccessGuard = Depends(get_guard),
    service: MembershipService = Depends(get_membership_service),
) -> MemberListResponse:
    _enforce(guard.authorize_read(caller_id, Scope.TENANT, tenant_id))
    return MemberListResponse(
        scope=Scope.TENANT.label,
        scope_id=tenant_id,
        principal_ids=service.list_members(Scope.TENANT, tenant_id),
    )


@router.post(
    "/tenants/{tenant_id}/members",
    response_model=MembershipResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_tenant_member(
    tenant_id: UUID,
    payload: AddMemberRequest,
    response: Response,
    caller_id: UUID = Depends(get_caller),
    directory: TenantDirectory = Depends(get_directory),
    guard: AccessGuard = Depends(get_guard),
    service: MembershipService = Depends(get_membership_service),
) -> MembershipResponse:
    _enforce(guard.authorize_write(caller_id, tenant_id, Scope.TENANT, tenant_id))
    if directory.resolve_tenant_by_id(tenant_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="tenant not found")
    membership, created = service.add_tenant_member(
        AddMemberInput(principal_id=payload.principal_id, scope_id=tenant_id),
        actor=caller_id,
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return MembershipResponse(
        scope=membership.scope.label,
        scope_id=membership.scope_id,
        principal_id=membership.principal_id,
        created=created,
    )


@router.delete("/tenants/{tenant_id}/members/{principal_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_tenant_member(
    tenant_id: UUID,
    principal_id: UUID,
    caller_id: UUID = Depends(get_caller),
    guard: AccessGuard = Depends(get_guard),
    service: MembershipService = Depends(get_membership_service),
) -> Response:
    _enforce(guard.authorize_write(caller_id, tenant_id, Scope.TENANT, tenant_id))
    try:
        service.remove_tenant_member(tenant_id, principal_id, actor=caller_id)
    except ValueError as exc:
        raise _http_error_from_value_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/tenants/{tenant_id}/role-assignments",
    response_model=RoleAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
def assign_role(
    tenant_id: UUID,
    payload: RoleAssignmentRequest,
    response: Response,
    caller_id: UUID = Depends(get_caller),
    guard: AccessGuard = Depends(get_guard),
    service: MembershipService = Depends(get_membership_service),
) -> RoleAssignmentResponse:
    """Grant a tenant-scoped role to a principal."""
    _enforce(guard.authorize_write(caller_id, tenant_id, Scope.TENANT, tenant_id))
    try:
        created = service.assign_role(
            AssignRoleInput(principal_id=payload.principal_id, tenant_id=tenant_id, role=payload.role),
            actor=caller_id,
        )
    except ValueError as exc:
        raise _http_error_from_value_error(exc) from exc
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return RoleAssignmentResponse(
        tenant_id=tenant_id,
        principal_id=payload.principal_id,
        role=payload.role,
        created=created,
    )


@router.delete(
    "/tenants/{tenant_id}/role-assignments/{principal_id}/{role}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def revoke_role(
    tenant_id: UUID,
    principal_id: UUID,
    role: str,
    caller_id: UUID = Depends(get_caller),
    guard: AccessGuard = Depends(get_guard),
    service: MembershipService = Depends(get_membership_service),
) -> Response:
    _enforce(guard.authorize_write(caller_id, tenant_id, Scope.TENANT, tenant_id))
    try:
        service.revoke_role(
            AssignRoleInput(principal_id=principal_id, tenant_id=tenant_id, role=role),
            actor=caller_id,
        )
    except ValueError as exc:
        raise _http_error_from_value_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/application/members", response_model=MemberListResponse)
def list_application_members(
    caller_id: UUID = Depends(get_caller),
    guard: AccessGuard = Depends(get_guard),
    service: MembershipService = Depends(get_membership_service),
) -> MemberListResponse:
    _enforce(guard.authorize_read(caller_id, Scope.APPLICATION))
    return MemberListResponse(
        scope=Scope.APPLICATION.label,
        principal_ids=service.list_members(Scope.APPLICATION),
    )


@router.post(
    "/application/members",
    response_model=MembershipResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_application_member(
    payload: AddMemberRequest,
    response: Response,
    caller_id: UUID = Depends(get_caller),
    guard: AccessGuard = Depends(get_guard),
    service: MembershipService = Depends(get_membership_service),
) -> MembershipResponse:
    """Grant application-wide access; only application members may do so."""
    _require_application_scope(guard, caller_id)
    membership, created = service.add_application_member(
        AddMemberInput(principal_id=payload.principal_id), actor=caller_id
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return MembershipResponse(
        scope=membership.scope.label,
        scope_id=None,
        principal_id=membership.principal_id,
        created=created,
    )


@router.delete("/application/members/{principal_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_application_member(
    principal_id: UUID,
    caller_id: UUID = Depends(get_caller),
    guard: AccessGuard = Depends(get_guard),
    service: MembershipService = Depends(get_membership_service),
) -> Response:
    _require_application_scope(guard, caller_id)
    try:
        service.remove_application_member(principal_id, actor=caller_id)
    except ValueError as exc:
        raise _http_error_from_value_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/jobs/generate-bills", response_model=GenerateBillsResponse)
def generate_bills(
    payload: GenerateBillsRequest | None = None,
    caller_id: UUID = Depends(get_caller),
    guard: AccessGuard = Depends(get_guard),
    generator: BillGenerator = Depends(get_generator),
) -> GenerateBillsResponse:
    """Run the bill generator on demand; restricted to application members."""
    _require_application_scope(guard, caller_id)
    payload = payload or GenerateBillsRequest()
    as_of = payload.as_of or datetime.now(timezone.utc).date()
    try:
        report = generator.run(as_of, horizon_days=payload.horizon_days, since=payload.since)
    except ValueError as exc:
        raise _http_error_from_value_error(exc) from exc
    return GenerateBillsResponse(
        window_start=report.window_start,
        window_end=report.window_end,
        schedules=report.schedules,
        created=report.created,
        skipped=report.skipped,
        invalid=report.invalid,
    )


def _http_error_from_value_error(exc: ValueError) -> HTTPException:
    message = str(exc).lower()
    status_code = status.HTTP_400_BAD_REQUEST
    if isinstance(exc, CrossTenantError):
        status_code = status.HTTP_403_FORBIDDEN
    elif "not found" in message:
        status_code = status.HTTP_404_NOT_FOUND
    return HTTPException(status_code=status_code, detail=str(exc))


def install_error_handlers(app: FastAPI) -> None:
    """Map storage outages to 503 so they are never reported as denials."""

    @app.exception_handler(StorageUnavailableError)
    def storage_unavailable(request: Request, exc: StorageUnavailableError) -> JSONResponse:
        logger.error("storage unavailable while serving %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "storage unavailable"},
        )
