"""HTTP route definitions for the directory admin console."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel, EmailStr, Field

from schemas import (
    FlowAccount as FlowAccountView,
    FlowAccountCredential,
    PoolAssignmentChanged,
    SubscriptionDuration,
    UserStatus,
)

from ..config import get_settings
from ..domain.accounts import FlowAccountRegistry
from ..domain.allocator import PoolAllocator, PoolAssignment
from ..domain.contracts import (
    USERS,
    CreateFlowAccountInput,
    StatusRequest,
    TokenRequest,
    UpdateFlowAccountInput,
)
from ..domain.coordinator import UserMutationCoordinator
from ..domain.entitlement import can_upgrade, count_authorized
from ..domain.errors import (
    AccountFull,
    AccountInUse,
    AccountNotFound,
    DirectoryError,
    DuplicateAccount,
    InvalidRequest,
    NoCapacity,
    NothingAssigned,
    StoreConflict,
    StoreWriteFailed,
    TokenCeilingReached,
    UserNotFound,
)
from ..domain.records import AUTHORIZED_TOKEN_LIMIT, DirectoryUser, FlowAccount
from ..security.rate_limiter import RateLimiter, build_rate_limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")


class CreateFlowAccountRequest(BaseModel):
    """Payload accepted when adding an account to the pool."""

    email: EmailStr
    password: str = Field(..., min_length=1)
    code: str | None = Field(default=None, description="Defaults to the lowest free E<n> code")


class UpdateFlowAccountRequest(BaseModel):
    email: EmailStr | None = None
    password: str | None = None


class NextCodeResponse(BaseModel):
    code: str


class AssignRequest(BaseModel):
    """Optional explicit account; omitted means least loaded."""

    code: str | None = None


class SaveChangesRequest(BaseModel):
    """Admin "save" for one user. Omitted parts are left untouched."""

    status: UserStatus | None = None
    subscription_duration: SubscriptionDuration = SubscriptionDuration.six_months
    personal_token: str | None = Field(
        default=None, description="Blank clears the token; omitted leaves it as is"
    )


class SaveError(BaseModel):
    error: str
    message: str


class SaveChangesResponse(BaseModel):
    success: bool
    errors: list[SaveError] = Field(default_factory=list)


class EntitlementSummary(BaseModel):
    authorized_count: int
    limit: int


class EntitlementCheckRequest(BaseModel):
    status: UserStatus


class EntitlementCheckResponse(BaseModel):
    allowed: bool
    reason: SaveError | None = None


settings = get_settings()

rate_limiter: RateLimiter = build_rate_limiter(settings)

_STATUS_BY_ERROR: dict[type[DirectoryError], int] = {
    UserNotFound: status.HTTP_404_NOT_FOUND,
    AccountNotFound: status.HTTP_404_NOT_FOUND,
    AccountFull: status.HTTP_409_CONFLICT,
    NoCapacity: status.HTTP_409_CONFLICT,
    NothingAssigned: status.HTTP_409_CONFLICT,
    AccountInUse: status.HTTP_409_CONFLICT,
    DuplicateAccount: status.HTTP_409_CONFLICT,
    TokenCeilingReached: status.HTTP_403_FORBIDDEN,
    InvalidRequest: status.HTTP_400_BAD_REQUEST,
    StoreConflict: status.HTTP_409_CONFLICT,
    StoreWriteFailed: status.HTTP_502_BAD_GATEWAY,
}


def get_allocator(request: Request) -> PoolAllocator:
    return request.app.state.allocator


def get_registry(request: Request) -> FlowAccountRegistry:
    return request.app.state.registry


def get_coordinator(request: Request) -> UserMutationCoordinator:
    return request.app.state.coordinator


def _enforce_rate_limit(operator: str, action: str) -> None:
    decision = rate_limiter.check(operator, action)
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="rate limited",
            headers={"Retry-After": str(decision.retry_after)},
        )


def _view(account: FlowAccount) -> FlowAccountView:
    return FlowAccountView(
        id=account.id,
        code=account.code,
        email=account.email,
        occupancy=account.occupancy,
        capacity=account.capacity,
        status=account.status,
        created_at=account.created_at,
    )


def _assignment_event(assignment: PoolAssignment) -> PoolAssignmentChanged:
    return PoolAssignmentChanged(
        user_id=assignment.user_id,
        code=assignment.code,
        email=assignment.email,
        password=assignment.password,
        occurred_at=datetime.now(timezone.utc),
    )


@router.get("/flow-accounts", response_model=list[FlowAccountView])
def list_flow_accounts(registry: FlowAccountRegistry = Depends(get_registry)) -> list[FlowAccountView]:
    """Every account in the pool, newest first, secrets omitted."""
    try:
        return [_view(account) for account in registry.list_accounts()]
    except DirectoryError as exc:
        raise _http_error_from_directory_error(exc) from exc


@router.get("/flow-accounts/next-code", response_model=NextCodeResponse)
def next_flow_account_code(registry: FlowAccountRegistry = Depends(get_registry)) -> NextCodeResponse:
    try:
        return NextCodeResponse(code=registry.propose_code())
    except DirectoryError as exc:
        raise _http_error_from_directory_error(exc) from exc


@router.post("/flow-accounts", response_model=FlowAccountView, status_code=status.HTTP_201_CREATED)
def create_flow_account(
    payload: CreateFlowAccountRequest,
    registry: FlowAccountRegistry = Depends(get_registry),
    operator: str = Header(default="", alias="X-Admin-ID"),
) -> FlowAccountView:
    _enforce_rate_limit(operator, "flow-account")
    try:
        account = registry.create_account(
            CreateFlowAccountInput(email=payload.email, password=payload.password, code=payload.code)
        )
    except DirectoryError as exc:
        raise _http_error_from_directory_error(exc) from exc
    return _view(account)


@router.patch("/flow-accounts/{account_id}", response_model=FlowAccountView)
def update_flow_account(
    account_id: int,
    payload: UpdateFlowAccountRequest,
    registry: FlowAccountRegistry = Depends(get_registry),
    operator: str = Header(default="", alias="X-Admin-ID"),
) -> FlowAccountView:
    _enforce_rate_limit(operator, "flow-account")
    try:
        account = registry.update_account(
            account_id, UpdateFlowAccountInput(email=payload.email, password=payload.password)
        )
    except DirectoryError as exc:
        raise _http_error_from_directory_error(exc) from exc
    return _view(account)


@router.delete("/flow-accounts/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_flow_account(
    account_id: int,
    registry: FlowAccountRegistry = Depends(get_registry),
    operator: str = Header(default="", alias="X-Admin-ID"),
) -> None:
    """Deactivate an empty account; accounts still holding users are refused."""
    _enforce_rate_limit(operator, "flow-account")
    try:
        registry.remove_account(account_id)
    except DirectoryError as exc:
        raise _http_error_from_directory_error(exc) from exc


@router.get("/flow-accounts/{code}/credential", response_model=FlowAccountCredential)
def flow_account_credential(
    code: str,
    registry: FlowAccountRegistry = Depends(get_registry),
) -> FlowAccountCredential:
    try:
        account = registry.credential_for(code)
    except DirectoryError as exc:
        raise _http_error_from_directory_error(exc) from exc
    return FlowAccountCredential(code=account.code, email=account.email, password=account.password)


@router.post(
    "/users/{user_id}/flow-account",
    response_model=PoolAssignmentChanged,
    status_code=status.HTTP_201_CREATED,
)
def assign_flow_account(
    user_id: str,
    payload: AssignRequest | None = None,
    allocator: PoolAllocator = Depends(get_allocator),
    operator: str = Header(default="", alias="X-Admin-ID"),
) -> PoolAssignmentChanged:
    _enforce_rate_limit(operator, "assign")
    try:
        assignment = allocator.assign(user_id, payload.code if payload else None)
    except DirectoryError as exc:
        raise _http_error_from_directory_error(exc) from exc
    return _assignment_event(assignment)


@router.put("/users/{user_id}/flow-account", response_model=PoolAssignmentChanged)
def reassign_flow_account(
    user_id: str,
    payload: AssignRequest | None = None,
    allocator: PoolAllocator = Depends(get_allocator),
    operator: str = Header(default="", alias="X-Admin-ID"),
) -> PoolAssignmentChanged:
    """Release the current account, if any, then assign afresh."""
    _enforce_rate_limit(operator, "assign")
    try:
        assignment = allocator.reassign(user_id, payload.code if payload else None)
    except DirectoryError as exc:
        raise _http_error_from_directory_error(exc) from exc
    return _assignment_event(assignment)


@router.delete("/users/{user_id}/flow-account", response_model=PoolAssignmentChanged)
def release_flow_account(
    user_id: str,
    allocator: PoolAllocator = Depends(get_allocator),
    operator: str = Header(default="", alias="X-Admin-ID"),
) -> PoolAssignmentChanged:
    _enforce_rate_limit(operator, "assign")
    try:
        allocator.release(user_id)
    except DirectoryError as exc:
        raise _http_error_from_directory_error(exc) from exc
    return PoolAssignmentChanged(user_id=user_id, occurred_at=datetime.now(timezone.utc))


@router.patch("/users/{user_id}", response_model=SaveChangesResponse)
def save_user_changes(
    user_id: str,
    payload: SaveChangesRequest,
    coordinator: UserMutationCoordinator = Depends(get_coordinator),
    operator: str = Header(default="", alias="X-Admin-ID"),
) -> SaveChangesResponse:
    """Apply status and token changes together; every failure is reported."""
    _enforce_rate_limit(operator, "save")
    status_request = None
    if payload.status is not None or payload.subscription_duration is SubscriptionDuration.lifetime:
        status_request = StatusRequest(
            status=payload.status or UserStatus.lifetime,
            subscription_duration=payload.subscription_duration,
        )
    token_request = None
    if payload.personal_token is not None:
        token_request = TokenRequest(personal_token=payload.personal_token)

    try:
        result = coordinator.save_changes(user_id, status_request, token_request)
    except DirectoryError as exc:
        raise _http_error_from_directory_error(exc) from exc
    return SaveChangesResponse(
        success=result.success,
        errors=[SaveError(**error.to_dict()) for error in result.errors],
    )


@router.get("/entitlements", response_model=EntitlementSummary)
def entitlement_summary(request: Request) -> EntitlementSummary:
    """Current number of token-authorized users against the ceiling."""
    store = request.app.state.store
    try:
        users = [DirectoryUser.from_record(row) for row in store.select_all(USERS)]
    except DirectoryError as exc:
        raise _http_error_from_directory_error(exc) from exc
    return EntitlementSummary(authorized_count=count_authorized(users), limit=AUTHORIZED_TOKEN_LIMIT + 1)


@router.post("/users/{user_id}/entitlement-check", response_model=EntitlementCheckResponse)
def check_entitlement(user_id: str, payload: EntitlementCheckRequest, request: Request) -> EntitlementCheckResponse:
    """Preview whether a status change would pass the token ceiling."""
    store = request.app.state.store
    try:
        record = store.get_by_id(USERS, user_id)
        if record is None:
            raise UserNotFound("User not found")
        users = [DirectoryUser.from_record(row) for row in store.select_all(USERS)]
    except DirectoryError as exc:
        raise _http_error_from_directory_error(exc) from exc

    decision = can_upgrade(DirectoryUser.from_record(record), payload.status, count_authorized(users))
    reason = SaveError(**decision.reason.to_dict()) if decision.reason else None
    return EntitlementCheckResponse(allowed=decision.allowed, reason=reason)


def _http_error_from_directory_error(exc: DirectoryError) -> HTTPException:
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type in type(exc).__mro__:
        if error_type in _STATUS_BY_ERROR:
            status_code = _STATUS_BY_ERROR[error_type]
            break
    if status_code >= 500:
        logger.error("record store failure: %s", exc.message)
    return HTTPException(status_code=status_code, detail=exc.to_dict())
