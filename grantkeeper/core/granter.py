"""
The grant workflow state machine.

Every grant lives in exactly one execution of the granter state machine, named
by the grant ID. The execution input is the only stored copy of the grant;
status is derived from the execution status and the last state it entered.

    PENDING --(Activate Grant ok)--> ACTIVE --(window end)--> EXPIRED
       |                               |
       +------(operator revoke)--------+---------------------> REVOKED
       +------(provider failure)-------+---------------------> ERROR
"""
import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from grantkeeper.adapters.step_functions import ExecutionDescription, ExecutionStatus, StepFunctionsEngine
from grantkeeper.core.context import Context
from grantkeeper.errors import ValidationError
from grantkeeper.models.grant import Grant, GrantStatus, WorkflowInput
from grantkeeper.providers.base import ArgValidator
from grantkeeper.providers.registry import ProviderRegistry
from grantkeeper.validators import validate_grant_id
from grantkeeper.workflows.definition import EXPIRE_GRANT, WAIT_FOR_WINDOW_END

logger = logging.getLogger(__name__)

# Once one of these has been entered the provider has granted access
ACTIVE_STATES = (WAIT_FOR_WINDOW_END, EXPIRE_GRANT)

STATUS_BY_EXECUTION = {
    ExecutionStatus.SUCCEEDED: GrantStatus.EXPIRED,
    ExecutionStatus.ABORTED: GrantStatus.REVOKED,
    ExecutionStatus.FAILED: GrantStatus.ERROR,
    ExecutionStatus.TIMED_OUT: GrantStatus.ERROR,
}


@dataclass
class CreateGrantOpts:
    provider: str
    subject: str
    start: datetime.datetime
    end: datetime.datetime
    with_: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


class Granter:
    def __init__(self, engine: StepFunctionsEngine, providers: ProviderRegistry):
        self.engine = engine
        self.providers = providers

    def validate_grant(self, ctx: Context, opts: CreateGrantOpts) -> None:
        """
        Checks that a grant could be created without starting anything.
        Providers that implement ArgValidator also check their args here.
        """
        registered = self.providers.lookup(opts.provider)
        if opts.start is None or opts.end is None or opts.end <= opts.start:
            raise ValidationError("grant end must be after its start")
        if isinstance(registered.provider, ArgValidator):
            registered.provider.validate(dict(opts.with_))

    def create_grant(self, ctx: Context, opts: CreateGrantOpts) -> Grant:
        """Starts the execution that will provision and later expire the grant."""
        self.validate_grant(ctx, opts)

        grant = Grant(
            id=validate_grant_id(opts.id or Grant.create_id()),
            provider=opts.provider,
            subject=opts.subject,
            with_=dict(opts.with_),
            status=GrantStatus.PENDING,
            start=opts.start,
            end=opts.end,
        )
        self.engine.start(grant.id, WorkflowInput(grant).to_json())
        logger.info(f"Created grant {grant.id} on provider {grant.provider}")
        return grant

    def describe_grant(self, ctx: Context, grant_id: str) -> Grant:
        desc = self.engine.describe(grant_id)
        grant = WorkflowInput.from_json(desc.input).grant
        grant.status = self._derive_status(desc, grant_id)
        return grant

    def revoke_grant(self, ctx: Context, grant_id: str, revoker: str) -> Grant:
        """
        Revokes a grant early.

        If the grant is ACTIVE the provider revokes the access first; if the
        execution has not reached that point, stopping it is enough. Any failure
        aborts before the status changes so the call can simply be retried.
        An execution that already finished is returned as-is.
        """
        logger.info(f"Revoking grant {grant_id} (requested by {revoker})")

        desc = self.engine.describe(grant_id)
        grant = WorkflowInput.from_json(desc.input).grant

        if not desc.running:
            grant.status = STATUS_BY_EXECUTION.get(desc.status, GrantStatus.ERROR)
            logger.info(f"Grant {grant_id} execution already stopped ({desc.status}), nothing to do")
            return grant

        if self.engine.current_state(grant_id) in ACTIVE_STATES:
            grant.status = GrantStatus.ACTIVE
            provider = self.providers.get(grant.provider)
            provider.revoke(ctx, grant.subject, grant.args_json(), grant.id)
            logger.info(f"Provider revoked access for grant {grant_id}")
        else:
            logger.info(f"Grant {grant_id} not yet active, stopping execution only")

        self.engine.stop(grant_id, cause=f"revoked by {revoker}")
        grant.transition(GrantStatus.REVOKED)
        return grant

    def is_active(self, ctx: Context, grant_id: str) -> bool:
        """Asks the provider directly whether the grant's access currently exists."""
        grant = self.describe_grant(ctx, grant_id)
        provider = self.providers.get(grant.provider)
        return provider.is_active(ctx, grant.subject, grant.args_json(), grant.id)

    def instructions(self, ctx: Context, grant_id: str) -> str:
        grant = self.describe_grant(ctx, grant_id)
        provider = self.providers.get(grant.provider)
        return provider.instructions(ctx, grant.subject, grant.args_json(), grant.id)

    def _derive_status(self, desc: ExecutionDescription, grant_id: str) -> str:
        if not desc.running:
            return STATUS_BY_EXECUTION.get(desc.status, GrantStatus.ERROR)
        if self.engine.current_state(grant_id) in ACTIVE_STATES:
            return GrantStatus.ACTIVE
        return GrantStatus.PENDING
