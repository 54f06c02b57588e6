import boto3
import logging
from typing import Any, Dict, List, Optional

from grantkeeper.adapters.aws_sso import SSOAdminAdapter, permission_set_name
from grantkeeper.adapters.identity_store_adapter import IdentityStoreAdapter
from grantkeeper.core.context import Context
from grantkeeper.errors import ConflictError, NotFoundError, ValidationError
from grantkeeper.providers.base import Args, Option, parse_args
from grantkeeper.validators import validate_account_id, validate_arn

logger = logging.getLogger(__name__)

REQUIRED_ARGS = ("taskDefinitionFamily",)


class ECSShellSSOProvider:
    """
    Grants interactive shell access (ECS Exec) to the running tasks of one task
    definition family, through a per-grant IAM Identity Center permission set.
    """
    def __init__(
        self,
        account_id: str,
        cluster_arn: str,
        region: str,
        identity_store_id: str,
        sso: SSOAdminAdapter,
        directory: IdentityStoreAdapter,
        ecs_client=None,
    ):
        self.account_id = validate_account_id(account_id)
        self.cluster_arn = validate_arn(cluster_arn, "ecs")
        self.region = region
        self.identity_store_id = identity_store_id
        self.sso = sso
        self.directory = directory
        self.ecs = ecs_client or boto3.client("ecs", region_name=region)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "ECSShellSSOProvider":
        try:
            return cls(
                account_id=cfg["accountId"],
                cluster_arn=cfg["ecsClusterArn"],
                region=cfg["ecsRegion"],
                identity_store_id=cfg["identityStoreId"],
                sso=SSOAdminAdapter.from_config(cfg),
                directory=IdentityStoreAdapter(cfg["identityStoreId"]),
            )
        except KeyError as e:
            raise ValidationError(f"aws-ecs-shell-sso provider config is missing {e}")

    def __repr__(self):
        return f"ECSShellSSOProvider(account={self.account_id}, cluster={self.cluster_arn})"

    # --- CONTRACT ---

    def validate(self, args: Args) -> None:
        parse_args(args, REQUIRED_ARGS)

    def grant(self, ctx: Context, subject: str, args: Args, grant_id: str) -> None:
        a = parse_args(args, REQUIRED_ARGS)
        family = a["taskDefinitionFamily"]
        logger.info(f"Granting ECS shell access for grant {grant_id} (family: {family})")

        self.sso.ensure_account_exists(ctx, self.account_id)
        user_id = self.directory.get_user_id(ctx, subject)

        ps_arn = self.sso.create_permission_set(
            ctx,
            name=permission_set_name(grant_id),
            grant_id=grant_id,
            description="Grantkeeper ECS shell access",
            inline_policy=self._policy(family),
        )
        self.sso.assign(ctx, self.account_id, ps_arn, user_id)

    def revoke(self, ctx: Context, subject: str, args: Args, grant_id: str) -> None:
        parse_args(args, REQUIRED_ARGS)
        self.sso.ensure_account_exists(ctx, self.account_id)

        try:
            user_id = self.directory.get_user_id(ctx, subject)
        except NotFoundError:
            logger.warning(f"Grant {grant_id}: user no longer exists, nothing to revoke")
            return

        name = permission_set_name(grant_id)
        ps_arn = self.sso.find_permission_set_arn(ctx, name)
        if ps_arn is None:
            logger.warning(f"Grant {grant_id}: permission set {name} already deleted, nothing to revoke")
            return
        try:
            owned = self.sso.owned_by(ctx, ps_arn, grant_id)
        except NotFoundError:
            # deleted by a concurrent revoke since the scan
            logger.warning(f"Grant {grant_id}: permission set {name} already deleted, nothing to revoke")
            return
        if not owned:
            raise ConflictError(f"permission set {name} belongs to another grant, refusing to revoke it")

        self.sso.unassign(ctx, self.account_id, ps_arn, user_id)
        logger.info(f"Deleting permission set {name}")
        self.sso.delete_permission_set(ctx, ps_arn)

    def is_active(self, ctx: Context, subject: str, args: Args, grant_id: str) -> bool:
        parse_args(args, REQUIRED_ARGS)
        try:
            user_id = self.directory.get_user_id(ctx, subject)
        except NotFoundError:
            return False
        ps_arn = self.sso.find_permission_set_arn(ctx, permission_set_name(grant_id))
        if ps_arn is None:
            return False
        try:
            if not self.sso.owned_by(ctx, ps_arn, grant_id):
                return False
        except NotFoundError:
            return False
        return self.sso.has_assignment(ctx, self.account_id, ps_arn, user_id)

    def instructions(self, ctx: Context, subject: str, args: Args, grant_id: str) -> str:
        a = parse_args(args, REQUIRED_ARGS)
        family = a["taskDefinitionFamily"]
        url = f"https://{self.identity_store_id}.awsapps.com/start"

        task = self._latest_running_task(family)
        if task is None:
            return (
                f"We couldn't find a running task for the task family {family}.\n\n"
                "Start a new task in your ECS cluster then refresh this page to get access.\n"
            )

        task_id = task["taskArn"].split("/")[-1]
        if not task.get("enableExecuteCommand", False):
            return (
                f"The specified task: {task_id} does not have execute command enabled "
                "so we were unable to generate access instructions.\n"
                "Enable ECS Exec on the task and then request the role again.\n"
            )

        return (
            "# Browser\n"
            f"You can access this role at your [AWS SSO URL]({url})\n\n"
            "# CLI\n"
            "```\n"
            f"aws configure sso --profile {permission_set_name(grant_id)} "
            f"# start URL: {url}, account: {self.account_id}, role: {permission_set_name(grant_id)}\n"
            f"aws ecs execute-command --cluster {self.cluster_arn} --task {task_id} "
            "--interactive --command '/bin/sh' "
            f"--profile {permission_set_name(grant_id)} --region {self.region}\n"
            "```\n"
        )

    def options(self, ctx: Context, arg_id: str) -> List[Option]:
        if arg_id != "taskDefinitionFamily":
            raise ValidationError(f"aws-ecs-shell-sso has no options for argument '{arg_id}'")

        options = []
        next_token = None
        while True:
            kwargs = {"status": "ACTIVE"}
            if next_token:
                kwargs["nextToken"] = next_token
            resp = self.ecs.list_task_definition_families(**kwargs)
            options.extend(Option(label=f, value=f) for f in resp.get("families", []))
            next_token = resp.get("nextToken")
            if not next_token:
                return options

    # --- HELPERS ---

    def _policy(self, family: str) -> Dict[str, Any]:
        cluster_name = self.cluster_arn.split("/")[-1]
        return {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Action": ["ecs:ExecuteCommand", "ecs:DescribeTasks"],
                    "Resource": [
                        f"arn:aws:ecs:{self.region}:{self.account_id}:task/{cluster_name}/*",
                        self.cluster_arn,
                        f"arn:aws:ecs:{self.region}:{self.account_id}:task-definition/{family}:*",
                    ],
                }
            ],
        }

    def _latest_running_task(self, family: str) -> Optional[Dict[str, Any]]:
        """Returns the RUNNING task with the highest task definition revision, if any."""
        latest_revision = 0
        latest_task = None
        next_token = None

        while True:
            kwargs = {"cluster": self.cluster_arn, "family": family}
            if next_token:
                kwargs["nextToken"] = next_token
            listed = self.ecs.list_tasks(**kwargs)
            task_arns = listed.get("taskArns", [])

            if task_arns:
                described = self.ecs.describe_tasks(cluster=self.cluster_arn, tasks=task_arns)
                for task in described.get("tasks", []):
                    if task.get("lastStatus") != "RUNNING":
                        continue
                    revision = int(task["taskDefinitionArn"].rsplit(":", 1)[1])
                    if revision > latest_revision:
                        latest_revision = revision
                        latest_task = task

            next_token = listed.get("nextToken")
            if not next_token:
                return latest_task
