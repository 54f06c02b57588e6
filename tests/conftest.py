"""
In-memory stand-ins for the boto3 clients grantkeeper talks to.
They raise real botocore ClientErrors so the production error handling is exercised.
"""
import os
import sys

import pytest
from botocore.exceptions import ClientError

# Add repo root to import path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from grantkeeper.core import retry  # noqa: E402

INSTANCE_ARN = "arn:aws:sso:::instance/ssoins-1234567890abcdef"
ACCOUNT_ID = "123456789012"
CLUSTER_ARN = "arn:aws:ecs:us-east-1:123456789012:cluster/production"
STATE_MACHINE_ARN = "arn:aws:states:us-east-1:123456789012:stateMachine:Granter"

# Keeps retry loops in tests to a few milliseconds
FAST_BACKOFF = retry.Backoff(initial=0.001, max_duration=0.2)


def client_error(code: str, message: str = "", operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)


class FakeSSOAdmin:
    def __init__(self):
        self.permission_sets = {}  # arn -> {"Name", "Tags"}
        self.assignments = set()  # (account, ps_arn, principal)
        self.inline_policies = {}
        self.create_conflicts = 0
        self.delete_conflicts = 0
        self.creation_failure_reason = None
        self.creation_in_progress_polls = 0
        self.calls = []
        # called once before the next tag lookup, to interleave a concurrent change
        self.on_list_tags = None
        self._counter = 0

    def _record(self, name, **kwargs):
        self.calls.append((name, kwargs))

    def create_permission_set(self, InstanceArn, Name, Description, Tags):  # noqa: N803 - boto3 shape
        self._record("create_permission_set", Name=Name)
        if any(ps["Name"] == Name for ps in self.permission_sets.values()):
            raise client_error("ConflictException", "permission set already exists", "CreatePermissionSet")
        self._counter += 1
        arn = f"arn:aws:sso:::permissionSet/ssoins-1234567890abcdef/ps-{self._counter:04d}"
        self.permission_sets[arn] = {"Name": Name, "Tags": list(Tags)}
        return {"PermissionSet": {"PermissionSetArn": arn, "Name": Name}}

    def put_inline_policy_to_permission_set(self, InstanceArn, PermissionSetArn, InlinePolicy):  # noqa: N803
        self.inline_policies[PermissionSetArn] = InlinePolicy
        return {}

    def list_permission_sets(self, InstanceArn, NextToken=None):  # noqa: N803
        # one permission set per page so pagination is always exercised
        arns = sorted(self.permission_sets)
        index = int(NextToken) if NextToken else 0
        page = arns[index:index + 1]
        resp = {"PermissionSets": page}
        if index + 1 < len(arns):
            resp["NextToken"] = str(index + 1)
        return resp

    def describe_permission_set(self, InstanceArn, PermissionSetArn):  # noqa: N803
        ps = self.permission_sets.get(PermissionSetArn)
        if ps is None:
            raise client_error("ResourceNotFoundException", operation="DescribePermissionSet")
        return {"PermissionSet": {"PermissionSetArn": PermissionSetArn, "Name": ps["Name"]}}

    def list_tags_for_resource(self, InstanceArn, ResourceArn):  # noqa: N803
        hook, self.on_list_tags = self.on_list_tags, None
        if hook:
            hook()
        if ResourceArn not in self.permission_sets:
            raise client_error("ResourceNotFoundException", operation="ListTagsForResource")
        return {"Tags": self.permission_sets[ResourceArn]["Tags"]}

    def create_account_assignment(self, InstanceArn, TargetId, TargetType, PermissionSetArn,  # noqa: N803
                                  PrincipalType, PrincipalId):
        self._record("create_account_assignment", TargetId=TargetId, PermissionSetArn=PermissionSetArn)
        if self.create_conflicts:
            self.create_conflicts -= 1
            raise client_error("ConflictException", "operation in progress", "CreateAccountAssignment")
        self.assignments.add((TargetId, PermissionSetArn, PrincipalId))
        return {"AccountAssignmentCreationStatus": {"Status": "IN_PROGRESS", "RequestId": "create-1"}}

    def describe_account_assignment_creation_status(self, InstanceArn, AccountAssignmentCreationRequestId):  # noqa: N803
        if self.creation_in_progress_polls:
            self.creation_in_progress_polls -= 1
            return {"AccountAssignmentCreationStatus": {"Status": "IN_PROGRESS"}}
        if self.creation_failure_reason:
            return {"AccountAssignmentCreationStatus": {
                "Status": "FAILED", "FailureReason": self.creation_failure_reason,
            }}
        return {"AccountAssignmentCreationStatus": {"Status": "SUCCEEDED"}}

    def delete_account_assignment(self, InstanceArn, TargetId, TargetType, PermissionSetArn,  # noqa: N803
                                  PrincipalType, PrincipalId):
        self._record("delete_account_assignment", TargetId=TargetId, PermissionSetArn=PermissionSetArn)
        if self.delete_conflicts:
            self.delete_conflicts -= 1
            raise client_error("ConflictException", "operation in progress", "DeleteAccountAssignment")
        key = (TargetId, PermissionSetArn, PrincipalId)
        if key not in self.assignments:
            raise client_error("ResourceNotFoundException", operation="DeleteAccountAssignment")
        self.assignments.discard(key)
        return {"AccountAssignmentDeletionStatus": {"Status": "IN_PROGRESS", "RequestId": "delete-1"}}

    def describe_account_assignment_deletion_status(self, InstanceArn, AccountAssignmentDeletionRequestId):  # noqa: N803
        return {"AccountAssignmentDeletionStatus": {"Status": "SUCCEEDED"}}

    def delete_permission_set(self, InstanceArn, PermissionSetArn):  # noqa: N803
        self._record("delete_permission_set", PermissionSetArn=PermissionSetArn)
        if PermissionSetArn not in self.permission_sets:
            raise client_error("ResourceNotFoundException", operation="DeletePermissionSet")
        del self.permission_sets[PermissionSetArn]
        return {}

    def list_account_assignments(self, InstanceArn, AccountId, PermissionSetArn, NextToken=None):  # noqa: N803
        assignments = [
            {"AccountId": acct, "PermissionSetArn": ps, "PrincipalType": "USER", "PrincipalId": principal}
            for acct, ps, principal in sorted(self.assignments)
            if acct == AccountId and ps == PermissionSetArn
        ]
        return {"AccountAssignments": assignments}

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)


class FakeOrganizations:
    def __init__(self, accounts=None):
        self.accounts = accounts if accounts is not None else {ACCOUNT_ID: "production"}

    def describe_account(self, AccountId):  # noqa: N803
        if AccountId not in self.accounts:
            raise client_error("AccountNotFoundException", operation="DescribeAccount")
        return {"Account": {"Id": AccountId, "Name": self.accounts[AccountId]}}

    def list_accounts(self, NextToken=None):  # noqa: N803
        return {"Accounts": [{"Id": i, "Name": n} for i, n in sorted(self.accounts.items())]}


class FakeIdentityStore:
    def __init__(self, users=None):
        # email -> list of user ids (more than one simulates a broken directory)
        self.users = users if users is not None else {"alice@example.com": ["user-alice"]}
        self.throttles = 0

    def list_users(self, IdentityStoreId, Filters):  # noqa: N803
        if self.throttles:
            self.throttles -= 1
            raise client_error("ThrottlingException", operation="ListUsers")
        email = Filters[0]["AttributeValue"]
        return {"Users": [{"UserId": uid, "UserName": email} for uid in self.users.get(email, [])]}


class FakeECS:
    def __init__(self, tasks=None, families=None):
        self.tasks = tasks or []
        self.families = families or []

    def list_tasks(self, cluster, family, nextToken=None):  # noqa: N803
        return {"taskArns": [t["taskArn"] for t in self.tasks]}

    def describe_tasks(self, cluster, tasks):
        return {"tasks": [t for t in self.tasks if t["taskArn"] in tasks]}

    def list_task_definition_families(self, status, nextToken=None):  # noqa: N803
        # two families per page
        index = int(nextToken) if nextToken else 0
        resp = {"families": self.families[index:index + 2]}
        if index + 2 < len(self.families):
            resp["nextToken"] = str(index + 2)
        return resp


@pytest.fixture
def fake_sso():
    return FakeSSOAdmin()


@pytest.fixture
def fake_orgs():
    return FakeOrganizations()


@pytest.fixture
def fake_identity_store():
    return FakeIdentityStore()


@pytest.fixture
def sso_adapter(fake_sso, fake_orgs):
    from grantkeeper.adapters.aws_sso import SSOAdminAdapter

    return SSOAdminAdapter(
        INSTANCE_ARN,
        sso_client=fake_sso,
        orgs_client=fake_orgs,
        poll_backoff=FAST_BACKOFF,
        conflict_backoff=FAST_BACKOFF,
    )


@pytest.fixture
def directory(fake_identity_store):
    from grantkeeper.adapters.identity_store_adapter import IdentityStoreAdapter

    return IdentityStoreAdapter("d-1234567890", client=fake_identity_store)


@pytest.fixture
def ctx():
    from grantkeeper.core.context import Context

    return Context.background()
