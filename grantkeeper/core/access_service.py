"""
Business logic for access requests: who may create, review, cancel, view and
revoke them. This is the only caller of the granter's mutating operations.
"""
import datetime
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from grantkeeper.adapters.aws_errors import NOT_FOUND_CODES, error_code
from grantkeeper.adapters.event_bus import EventBusPublisher
from grantkeeper.adapters.state_store import StateStore
from grantkeeper.adapters.step_functions import StepFunctionsEngine
from grantkeeper.core.context import Context
from grantkeeper.core.granter import CreateGrantOpts, Granter
from grantkeeper.errors import (
    AuthorizationError,
    ConflictError,
    GrantkeeperError,
    NoMatchingGroupError,
    NotFoundError,
    ProviderError,
    RequestCannotBeCancelledError,
    RequestNotFoundError,
    RuleNotFoundError,
    ValidationError,
)
from grantkeeper.models.events import (
    GrantCreated,
    GrantRevoked,
    RequestCancelled,
    RequestCreated,
    RequestReviewed,
)
from grantkeeper.models.grant import Grant
from grantkeeper.models.identity import User
from grantkeeper.models.request import AccessRule, Request, RequestStatus, Reviewer, Timing
from grantkeeper.providers.registry import ProviderRegistry
from grantkeeper.validators import validate_duration

logger = logging.getLogger(__name__)


@dataclass
class CreateRequestResult:
    request: Request
    reviewers: List[Reviewer] = field(default_factory=list)
    grant: Optional[Grant] = None


@dataclass
class RequestDetail:
    request: Request
    # UI hint only; it does not authorize anything
    can_review: bool = False


@dataclass
class RevokeRequestResult:
    request: Request
    grant: Grant


class Decision:
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"


@contextmanager
def translate_errors(action: str):
    """
    Converts errors from AWS and providers into the grantkeeper taxonomy so raw
    provider errors never reach callers of the service.
    """
    try:
        yield
    except GrantkeeperError:
        raise
    except ClientError as e:
        code = error_code(e)
        logger.warning(f"{action} failed with AWS error {code}")
        if code in NOT_FOUND_CODES or code == "ExecutionDoesNotExist":
            raise NotFoundError(f"{action} failed: resource not found ({code})") from e
        if code == "ConflictException":
            raise ConflictError(f"{action} failed: conflicting change in progress") from e
        raise ProviderError(f"{action} failed: {code or 'unknown AWS error'}") from e
    except BotoCoreError as e:
        logger.warning(f"{action} failed: {type(e).__name__}")
        raise ProviderError(f"{action} failed: {type(e).__name__}") from e
    except Exception as e:
        logger.error(f"{action} failed with unexpected {type(e).__name__}: {e}")
        raise ProviderError(f"{action} failed: {type(e).__name__}") from e


_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class AccessService:
    def __init__(self, store, granter: Granter, events=None, now: Callable[[], datetime.datetime] = _utcnow):
        """
        Args:
            store: Persistence for requests, reviewers and rules (StateStore).
            granter: Workflow state machine that owns grants.
            events: Optional audit event publisher with put(event).
            now: Clock, injectable for tests.
        """
        self.store = store
        self.granter = granter
        self.events = events
        self.now = now

    @classmethod
    def from_config(cls, config, registry: ProviderRegistry) -> "AccessService":
        """Wires the DynamoDB store, the Step Functions granter and the audit bus from `settings`."""
        settings = config.settings
        for key in ("state_machine_arn", "dynamodb_table"):
            if not settings.get(key):
                raise ValidationError(f"settings.{key} is not configured")
        return cls(
            store=StateStore(table_name=settings["dynamodb_table"]),
            granter=Granter(StepFunctionsEngine(settings["state_machine_arn"]), registry),
            events=EventBusPublisher(settings.get("event_bus_name") or "default"),
        )

    # --- CREATE ---

    def create_request(
        self,
        ctx: Context,
        user: User,
        rule_id: str,
        duration_seconds: float,
        arguments: Optional[Dict[str, Any]] = None,
    ) -> CreateRequestResult:
        """
        Validates a request against the current version of its access rule and
        stores it. Rules without approvers are approved (and granted) at once.
        """
        with translate_errors("create request"):
            rule = self.store.get_access_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)

        # duration is checked before anything is written or granted
        validate_duration(duration_seconds, rule.max_duration_seconds)

        if not set(user.groups) & set(rule.groups):
            raise NoMatchingGroupError()

        arguments = dict(arguments or {})
        fixed = set(arguments) & set(rule.target.with_)
        if fixed:
            raise ValidationError(f"arguments fixed by the access rule cannot be overridden: {sorted(fixed)}")

        now = self.now()
        request = Request(
            id=Request.create_id(),
            requested_by=user.id,
            subject=user.email,
            rule_id=rule.id,
            rule_version=rule.version,
            timing=Timing(duration_seconds=int(duration_seconds)),
            status=RequestStatus.PENDING,
            arguments=arguments,
            requested_at=now,
            updated_at=now,
        )
        # provider arguments are checked before anything is written
        with translate_errors("validate grant"):
            self.granter.validate_grant(ctx, self._grant_opts(request, rule))

        reviewers = [
            Reviewer(request_id=request.id, reviewer_id=reviewer_id)
            for reviewer_id in rule.approval.users
            if reviewer_id != user.id
        ]

        with translate_errors("create request"):
            self.store.save_request(request)
            self.store.save_reviewers(reviewers)
        logger.info(f"Created request {request.id} for rule {rule.id} ({len(reviewers)} reviewers)")
        self._emit(RequestCreated(
            request_id=request.id,
            requested_by=user.id,
            rule_id=rule.id,
            reviewer_ids=[r.reviewer_id for r in reviewers],
        ))

        result = CreateRequestResult(request=request, reviewers=reviewers)
        if not rule.approval.is_required():
            logger.info(f"Rule {rule.id} requires no approval, approving request {request.id}")
            result.grant = self._approve(ctx, request, rule)
        return result

    # --- REVIEW ---

    def review_request(self, ctx: Context, user: User, request_id: str, decision: str) -> CreateRequestResult:
        """Approves (starting the grant) or declines a pending request."""
        if decision not in (Decision.APPROVED, Decision.DECLINED):
            raise ValidationError(f"unknown review decision: {decision}")

        request = self._get_request(request_id)
        if not self._is_reviewer_or_admin(user, request):
            raise AuthorizationError(f"user {user.id} cannot review request {request_id}")
        if request.status != RequestStatus.PENDING:
            raise ConflictError(f"request {request_id} has already been {request.status.lower()}")

        result = CreateRequestResult(request=request)
        if decision == Decision.APPROVED:
            with translate_errors("review request"):
                rule = self.store.get_access_rule(request.rule_id, request.rule_version)
            if rule is None:
                raise RuleNotFoundError(request.rule_id)
            result.grant = self._approve(ctx, request, rule)
        else:
            self._set_status(request, RequestStatus.DECLINED)

        self._emit(RequestReviewed(request_id=request.id, reviewer_id=user.id, decision=decision))
        return result

    # --- CANCEL ---

    def cancel_request(self, ctx: Context, user: User, request_id: str) -> Request:
        """Only the requester may cancel, and only while the request is pending."""
        request = self._get_request(request_id)
        if request.requested_by != user.id:
            raise AuthorizationError(f"user {user.id} did not make request {request_id}")
        if request.status != RequestStatus.PENDING:
            raise RequestCannotBeCancelledError(request.status)

        self._set_status(request, RequestStatus.CANCELLED)
        logger.info(f"Request {request_id} cancelled")
        self._emit(RequestCancelled(request_id=request.id, cancelled_by=user.id))
        return request

    # --- REVOKE ---

    def revoke_request(self, ctx: Context, user: User, request_id: str) -> RevokeRequestResult:
        """
        Revokes the grant behind an approved request. Reviewers of the request
        and administrators only. If the granter fails, the request is left
        APPROVED so the revoke can be retried.
        """
        request = self._get_request(request_id)
        if not self._is_reviewer_or_admin(user, request):
            raise AuthorizationError(f"user {user.id} cannot revoke request {request_id}")
        if request.status != RequestStatus.APPROVED or not request.grant_id:
            raise ConflictError(f"request {request_id} has no active grant to revoke (status: {request.status})")

        with translate_errors("revoke grant"):
            grant = self.granter.revoke_grant(ctx, request.grant_id, revoker=user.id)

        self._set_status(request, RequestStatus.REVOKED)
        logger.info(f"Request {request_id} revoked, grant {grant.id} is {grant.status}")
        self._emit(GrantRevoked(request_id=request.id, grant_id=grant.id, revoked_by=user.id))
        return RevokeRequestResult(request=request, grant=grant)

    # --- VIEW ---

    def get_request(self, ctx: Context, user: User, request_id: str) -> RequestDetail:
        """
        The requester, a reviewer of the request, or an administrator may view it.
        can_review is only ever set on the reviewer/administrator branch.
        """
        request = self._get_request(request_id)
        if request.requested_by == user.id:
            return RequestDetail(request=request, can_review=False)
        if self._is_reviewer_or_admin(user, request):
            return RequestDetail(request=request, can_review=True)
        raise AuthorizationError(f"user {user.id} cannot view request {request_id}")

    def list_requests(
        self,
        ctx: Context,
        user: User,
        reviewer: bool = False,
        status: Optional[str] = None,
    ) -> List[Request]:
        """
        Requests the user made, or with reviewer=True the requests they were
        asked to review. Newest first.
        """
        if status is not None and status not in RequestStatus.ALL:
            raise ValidationError(f"unknown request status: {status}")

        with translate_errors("list requests"):
            if reviewer:
                requests = self.store.list_requests_for_reviewer(user.id, status)
            else:
                requests = self.store.list_requests_for_user(user.id, status)
        return sorted(requests, key=lambda r: r.requested_at or _EPOCH, reverse=True)

    # --- HELPERS ---

    def _get_request(self, request_id: str) -> Request:
        with translate_errors("get request"):
            request = self.store.get_request(request_id)
        if request is None:
            raise RequestNotFoundError(request_id)
        return request

    def _is_reviewer_or_admin(self, user: User, request: Request) -> bool:
        if user.is_admin:
            return True
        with translate_errors("get reviewer"):
            return self.store.get_reviewer(request.id, user.id) is not None

    def _set_status(self, request: Request, status: str) -> None:
        if request.is_terminal():
            raise ConflictError(f"request {request.id} is {request.status} and can no longer change")
        request.status = status
        request.updated_at = self.now()
        with translate_errors("update request"):
            self.store.save_request(request)

    def _grant_opts(self, request: Request, rule: AccessRule) -> CreateGrantOpts:
        start = request.timing.start_time or self.now()
        return CreateGrantOpts(
            provider=rule.target.provider_id,
            subject=request.subject,
            start=start,
            end=start + request.timing.duration,
            with_={**request.arguments, **rule.target.with_},
        )

    def _approve(self, ctx: Context, request: Request, rule: AccessRule) -> Grant:
        with translate_errors("create grant"):
            grant = self.granter.create_grant(ctx, self._grant_opts(request, rule))

        request.grant_id = grant.id
        self._set_status(request, RequestStatus.APPROVED)
        self._emit(GrantCreated(request_id=request.id, grant_id=grant.id, provider=grant.provider))
        return grant

    def _emit(self, event) -> None:
        if self.events is not None:
            self.events.put(event)
