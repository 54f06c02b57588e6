import logging
from typing import Any, Dict, List

from grantkeeper.adapters.aws_sso import SSOAdminAdapter
from grantkeeper.adapters.identity_store_adapter import IdentityStoreAdapter
from grantkeeper.core.context import Context
from grantkeeper.errors import NotFoundError, ValidationError
from grantkeeper.providers.base import Args, Option, parse_args
from grantkeeper.validators import validate_account_id, validate_arn

logger = logging.getLogger(__name__)

REQUIRED_ARGS = ("accountId", "permissionSetArn")


class AWSSSOProvider:
    """
    Assigns an existing, shared permission set to a user on an AWS account.
    Unlike the ECS provider the permission set is never created or deleted here.
    """
    def __init__(self, identity_store_id: str, sso: SSOAdminAdapter, directory: IdentityStoreAdapter):
        self.identity_store_id = identity_store_id
        self.sso = sso
        self.directory = directory

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "AWSSSOProvider":
        try:
            return cls(
                identity_store_id=cfg["identityStoreId"],
                sso=SSOAdminAdapter.from_config(cfg),
                directory=IdentityStoreAdapter(cfg["identityStoreId"]),
            )
        except KeyError as e:
            raise ValidationError(f"aws-sso provider config is missing {e}")

    def _args(self, args: Args):
        a = parse_args(args, REQUIRED_ARGS)
        return validate_account_id(a["accountId"]), validate_arn(a["permissionSetArn"], "sso")

    def validate(self, args: Args) -> None:
        self._args(args)

    def grant(self, ctx: Context, subject: str, args: Args, grant_id: str) -> None:
        account_id, ps_arn = self._args(args)
        logger.info(f"Granting SSO access for grant {grant_id} on {account_id}")
        self.sso.ensure_account_exists(ctx, account_id)
        user_id = self.directory.get_user_id(ctx, subject)
        self.sso.assign(ctx, account_id, ps_arn, user_id)

    def revoke(self, ctx: Context, subject: str, args: Args, grant_id: str) -> None:
        account_id, ps_arn = self._args(args)
        self.sso.ensure_account_exists(ctx, account_id)
        try:
            user_id = self.directory.get_user_id(ctx, subject)
        except NotFoundError:
            logger.warning(f"Grant {grant_id}: user no longer exists, nothing to revoke")
            return
        self.sso.unassign(ctx, account_id, ps_arn, user_id)

    def is_active(self, ctx: Context, subject: str, args: Args, grant_id: str) -> bool:
        account_id, ps_arn = self._args(args)
        try:
            user_id = self.directory.get_user_id(ctx, subject)
        except NotFoundError:
            return False
        return self.sso.has_assignment(ctx, account_id, ps_arn, user_id)

    def instructions(self, ctx: Context, subject: str, args: Args, grant_id: str) -> str:
        account_id, ps_arn = self._args(args)
        try:
            self.sso.ensure_account_exists(ctx, account_id)
        except NotFoundError:
            return (
                f"The AWS account {account_id} could not be found in your organization.\n"
                "It may have been closed or moved. Contact your administrator.\n"
            )
        url = f"https://{self.identity_store_id}.awsapps.com/start"
        return (
            "# Browser\n"
            f"You can access this role at your [AWS SSO URL]({url})\n\n"
            "# CLI\n"
            "```\n"
            f"aws configure sso  # start URL: {url}, account: {account_id}\n"
            "```\n"
        )

    def options(self, ctx: Context, arg_id: str) -> List[Option]:
        if arg_id == "accountId":
            return [
                Option(label=acct.get("Name", acct["Id"]), value=acct["Id"])
                for acct in self.sso.list_accounts(ctx)
            ]
        if arg_id == "permissionSetArn":
            return [Option(label=name, value=arn) for arn, name in self.sso.list_permission_sets(ctx)]
        raise ValidationError(f"aws-sso has no options for argument '{arg_id}'")
