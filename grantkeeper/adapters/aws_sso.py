import boto3
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from botocore.exceptions import ClientError

from grantkeeper.adapters.aws_errors import error_code, error_message, has_code
from grantkeeper.core import retry
from grantkeeper.core.context import Context
from grantkeeper.errors import ConflictError, NotFoundError, ProviderError

# Tag written on every permission set we create, carrying the untruncated grant ID
GRANT_ID_TAG = "grantkeeper:grant-id"
MANAGED_BY_TAG = "managed-by-grantkeeper"

# Permission set names have a maximum length of 32 in IAM Identity Center
PERMISSION_SET_NAME_MAX_LENGTH = 32

DEFAULT_RETRYABLE_DELETE_CODES = ("ConflictException",)


def permission_set_name(grant_id: str, max_length: int = PERMISSION_SET_NAME_MAX_LENGTH) -> str:
    """Deterministic permission set name for a grant: the grant ID, truncated."""
    return grant_id[:max_length]


class SSOAdminAdapter:
    """
    Wraps the IAM Identity Center (sso-admin) and Organizations APIs used by the
    SSO-based providers. Every write is followed by a status poll, and every
    delete treats "not found" as already done.
    """
    def __init__(
        self,
        instance_arn: str,
        sso_client=None,
        orgs_client=None,
        poll_backoff: retry.Backoff = retry.POLL_BACKOFF,
        conflict_backoff: retry.Backoff = retry.CONFLICT_BACKOFF,
        retryable_delete_codes: Iterable[str] = DEFAULT_RETRYABLE_DELETE_CODES,
    ):
        # Dependency Injection allows us to pass fake clients during testing
        self.instance_arn = instance_arn
        self.sso = sso_client or boto3.client("sso-admin")
        self.orgs = orgs_client or boto3.client("organizations")
        self.poll_backoff = poll_backoff
        self.conflict_backoff = conflict_backoff
        self.retryable_delete_codes = tuple(retryable_delete_codes)
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "SSOAdminAdapter":
        """Builds the adapter from a provider's `with` block (instanceArn, optional retryableDeleteCodes)."""
        codes = cfg.get("retryableDeleteCodes") or DEFAULT_RETRYABLE_DELETE_CODES
        if isinstance(codes, str):
            codes = [c.strip() for c in codes.split(",") if c.strip()]
        return cls(instance_arn=cfg["instanceArn"], retryable_delete_codes=codes)

    # --- READ METHODS ---

    def ensure_account_exists(self, ctx: Context, account_id: str) -> None:
        """
        Assignment APIs silently do nothing for accounts outside the organization,
        so the account is checked explicitly first.
        """
        try:
            self.orgs.describe_account(AccountId=account_id)
        except ClientError as e:
            if error_code(e) == "AccountNotFoundException":
                raise NotFoundError(f"account {account_id} was not found in the organization") from e
            raise

    def list_permission_sets(self, ctx: Context) -> List[Tuple[str, str]]:
        """Returns (arn, name) for every permission set in the instance."""
        results = []
        for arn in self._permission_set_arns():
            ps = self._describe_permission_set(arn)
            if ps is not None:
                results.append((arn, ps.get("Name", "")))
        return results

    def find_permission_set_arn(self, ctx: Context, name: str) -> Optional[str]:
        """
        There is no lookup by name, so page through all permission sets and
        describe each one. Returns None if nothing matches. Sets deleted while
        paging are skipped.
        """
        for arn in self._permission_set_arns():
            ps = self._describe_permission_set(arn)
            if ps is not None and ps.get("Name") == name:
                return arn
        return None

    def owned_by(self, ctx: Context, permission_set_arn: str, grant_id: str) -> bool:
        """
        True if the permission set was created for exactly this grant ID.

        Raises:
            NotFoundError: The permission set has been deleted.
        """
        return self._grant_id_tag(permission_set_arn) == grant_id

    def has_assignment(self, ctx: Context, account_id: str, permission_set_arn: str, user_id: str) -> bool:
        next_token = None
        while True:
            kwargs = dict(
                InstanceArn=self.instance_arn,
                AccountId=account_id,
                PermissionSetArn=permission_set_arn,
            )
            if next_token:
                kwargs["NextToken"] = next_token
            try:
                resp = self.sso.list_account_assignments(**kwargs)
            except ClientError as e:
                if error_code(e) == "ResourceNotFoundException":
                    return False
                raise
            for assignment in resp.get("AccountAssignments", []):
                if assignment.get("PrincipalType") == "USER" and assignment.get("PrincipalId") == user_id:
                    return True
            next_token = resp.get("NextToken")
            if not next_token:
                return False

    def list_accounts(self, ctx: Context) -> List[Dict[str, Any]]:
        accounts = []
        next_token = None
        while True:
            if next_token:
                resp = self.orgs.list_accounts(NextToken=next_token)
            else:
                resp = self.orgs.list_accounts()
            accounts.extend(resp.get("Accounts", []))
            next_token = resp.get("NextToken")
            if not next_token:
                return accounts

    # --- WRITE METHODS ---

    def create_permission_set(
        self,
        ctx: Context,
        name: str,
        grant_id: str,
        description: str,
        inline_policy: Dict[str, Any],
    ) -> str:
        """
        Creates (or reuses) the permission set for a grant and attaches its policy.

        A permission set with the same name is reused only if it was created for
        the same grant ID. Two grant IDs that share a 32 character prefix would
        otherwise silently share access.
        """
        try:
            resp = self.sso.create_permission_set(
                InstanceArn=self.instance_arn,
                Name=name,
                Description=description,
                Tags=[
                    {"Key": MANAGED_BY_TAG, "Value": "true"},
                    {"Key": GRANT_ID_TAG, "Value": grant_id},
                ],
            )
            arn = resp["PermissionSet"]["PermissionSetArn"]
        except ClientError as e:
            if error_code(e) != "ConflictException":
                raise
            arn = self.find_permission_set_arn(ctx, name)
            if arn is None:
                raise ConflictError(f"permission set {name} conflicts but could not be found") from e
            owner = self._grant_id_tag(arn)
            if owner != grant_id:
                raise ConflictError(
                    f"permission set {name} already belongs to grant {owner}, not {grant_id}"
                ) from e
            self.logger.warning(f"Permission set {name} already exists for this grant. Reusing it...")

        self.sso.put_inline_policy_to_permission_set(
            InstanceArn=self.instance_arn,
            PermissionSetArn=arn,
            InlinePolicy=json.dumps(inline_policy),
        )
        return arn

    def assign(self, ctx: Context, account_id: str, permission_set_arn: str, user_id: str) -> None:
        """
        PROVISIONING: assigns the permission set and waits for AWS to confirm it.
        """
        def create(_ctx: Context) -> Dict[str, Any]:
            return self.sso.create_account_assignment(
                InstanceArn=self.instance_arn,
                TargetId=account_id,
                TargetType="AWS_ACCOUNT",
                PermissionSetArn=permission_set_arn,
                PrincipalType="USER",
                PrincipalId=user_id,
            )

        # a conflict here means another operation on the same assignment is in flight
        res = retry.do(ctx, create, self.conflict_backoff, is_retryable=has_code(["ConflictException"]))
        status = res.get("AccountAssignmentCreationStatus", {})
        if status.get("FailureReason"):
            raise ProviderError(f"failed creating account assignment: {status['FailureReason']}")

        request_id = status.get("RequestId")

        def describe() -> Dict[str, Any]:
            return self.sso.describe_account_assignment_creation_status(
                InstanceArn=self.instance_arn,
                AccountAssignmentCreationRequestId=request_id,
            )["AccountAssignmentCreationStatus"]

        self._wait_for_status(ctx, describe, "creating account assignment")
        self.logger.info(f"AWS API: Granted access on {account_id}")

    def unassign(self, ctx: Context, account_id: str, permission_set_arn: str, user_id: str) -> bool:
        """
        REVOCATION: removes the assignment and waits for AWS to confirm it.
        Returns False if the assignment was already gone.
        """
        def delete(_ctx: Context) -> Dict[str, Any]:
            return self.sso.delete_account_assignment(
                InstanceArn=self.instance_arn,
                TargetId=account_id,
                TargetType="AWS_ACCOUNT",
                PermissionSetArn=permission_set_arn,
                PrincipalType="USER",
                PrincipalId=user_id,
            )

        # Identity Center is eventually consistent: deleting right after creating
        # returns ConflictException for a short while.
        try:
            res = retry.do(ctx, delete, self.conflict_backoff, is_retryable=has_code(self.retryable_delete_codes))
        except ClientError as e:
            if error_code(e) == "ResourceNotFoundException":
                self.logger.warning("Assignment already removed or not found. Continuing...")
                return False
            raise

        request_id = res.get("AccountAssignmentDeletionStatus", {}).get("RequestId")

        def describe() -> Dict[str, Any]:
            return self.sso.describe_account_assignment_deletion_status(
                InstanceArn=self.instance_arn,
                AccountAssignmentDeletionRequestId=request_id,
            )["AccountAssignmentDeletionStatus"]

        self._wait_for_status(ctx, describe, "deleting account assignment")
        self.logger.info(f"AWS API: Revoked access on {account_id}")
        return True

    def delete_permission_set(self, ctx: Context, permission_set_arn: str) -> None:
        """
        Deleting the permission set right after its last assignment can fail
        until the deletion has propagated, so every error except not-found is retried.
        """
        def delete(_ctx: Context) -> None:
            try:
                self.sso.delete_permission_set(
                    InstanceArn=self.instance_arn,
                    PermissionSetArn=permission_set_arn,
                )
            except ClientError as e:
                if error_code(e) == "ResourceNotFoundException":
                    self.logger.warning("Permission set already deleted. Continuing...")
                    return
                raise retry.RetryableError(error_message(e)) from e

        retry.do(ctx, delete, self.poll_backoff)

    # --- HELPERS ---

    def _permission_set_arns(self):
        next_token = None
        while True:
            if next_token:
                resp = self.sso.list_permission_sets(InstanceArn=self.instance_arn, NextToken=next_token)
            else:
                resp = self.sso.list_permission_sets(InstanceArn=self.instance_arn)
            for arn in resp.get("PermissionSets", []):
                yield arn
            next_token = resp.get("NextToken")
            if not next_token:
                return

    def _describe_permission_set(self, arn: str) -> Optional[Dict[str, Any]]:
        """Returns None if the permission set was deleted after it was listed."""
        try:
            resp = self.sso.describe_permission_set(InstanceArn=self.instance_arn, PermissionSetArn=arn)
        except ClientError as e:
            if error_code(e) == "ResourceNotFoundException":
                return None
            raise
        return resp.get("PermissionSet", {})

    def _grant_id_tag(self, arn: str) -> Optional[str]:
        try:
            resp = self.sso.list_tags_for_resource(InstanceArn=self.instance_arn, ResourceArn=arn)
        except ClientError as e:
            if error_code(e) == "ResourceNotFoundException":
                raise NotFoundError(f"permission set {arn} no longer exists") from e
            raise
        for tag in resp.get("Tags", []):
            if tag.get("Key") == GRANT_ID_TAG:
                return tag.get("Value")
        return None

    def _wait_for_status(self, ctx: Context, describe, action: str) -> Dict[str, Any]:
        """
        Polls an async operation status until it leaves IN_PROGRESS.
        A terminal failure reason is raised as-is.
        """
        def poll(_ctx: Context) -> Dict[str, Any]:
            try:
                status = describe()
            except ClientError as e:
                raise retry.RetryableError(error_message(e)) from e
            if status.get("Status") == "IN_PROGRESS":
                raise retry.RetryableError(f"{action} still in progress")
            return status

        status = retry.do(ctx, poll, self.poll_backoff)
        if status.get("FailureReason"):
            raise ProviderError(f"failed {action}: {status['FailureReason']}")
        return status
