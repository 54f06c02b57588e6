import boto3
import datetime
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from grantkeeper.errors import GrantkeeperError
from grantkeeper.models.request import AccessRule, Approval, Request, Reviewer, Target, Timing
from grantkeeper.providers.base import Option

# Requests are kept for 90 days after their last update
REQUEST_TTL_SECONDS = 86400 * 90

# GSI over gsi1pk / gsi1sk: USER#<id> for requests, REVIEWER#<id> for reviewer items
OWNER_INDEX = "gsi1"


class StateStoreError(GrantkeeperError):
    pass


def _iso(ts: Optional[datetime.datetime]) -> Optional[str]:
    return ts.isoformat() if ts else None


def _parse_iso(value: Optional[str]) -> Optional[datetime.datetime]:
    return datetime.datetime.fromisoformat(value) if value else None


class StateStore:
    """
    The 'Memory' of the access service.
    Single-table DynamoDB adapter for requests, reviewers, access rules and the
    provider option cache. Grants are NOT stored here: the workflow execution
    input is their only record.

    Key layout (pk / sk):
        REQUEST#<id>             / REQUEST
        REQUEST#<id>             / REVIEWER#<user id>
        RULE#<id>                / VERSION#<version>  and  CURRENT
        OPTIONS#<provider>#<arg> / OPTIONS

    Index "gsi1" (gsi1pk / gsi1sk):
        USER#<requester id>      / REQUEST#<requested at>#<id>
        REVIEWER#<reviewer id>   / REQUEST#<id>
    """
    def __init__(self, table_name: str, region_name: str = None, table=None):
        if table is None:
            dynamodb = boto3.resource("dynamodb", region_name=region_name)
            table = dynamodb.Table(table_name)
        self.table = table
        self.table_name = table_name

    def __repr__(self):
        return f"StateStore(table={self.table_name})"

    # --- low level ---

    def _put(self, item: Dict[str, Any]) -> None:
        try:
            self.table.put_item(Item=item)
        except ClientError as e:
            raise StateStoreError(f"Failed to save state to DynamoDB: {e}") from e

    def _get(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        try:
            resp = self.table.get_item(Key={"pk": pk, "sk": sk})
        except ClientError as e:
            raise StateStoreError(f"Failed to read state from DynamoDB: {e}") from e
        return resp.get("Item")

    # --- requests ---

    def save_request(self, request: Request) -> None:
        """
        Writes the request. Idempotent: an existing item with the same ID is overwritten.
        """
        self._put({
            "pk": f"REQUEST#{request.id}",
            "sk": "REQUEST",
            "gsi1pk": f"USER#{request.requested_by}",
            "gsi1sk": f"REQUEST#{_iso(request.requested_at) or ''}#{request.id}",
            "id": request.id,
            "requested_by": request.requested_by,
            "subject": request.subject,
            "rule_id": request.rule_id,
            "rule_version": request.rule_version,
            "status": request.status,
            "duration_seconds": Decimal(str(request.timing.duration_seconds)),
            "start_time": _iso(request.timing.start_time),
            "arguments": request.arguments,
            "grant_id": request.grant_id,
            "requested_at": _iso(request.requested_at),
            "updated_at": _iso(request.updated_at),
            "ttl": int(time.time()) + REQUEST_TTL_SECONDS,
        })

    def get_request(self, request_id: str) -> Optional[Request]:
        item = self._get(f"REQUEST#{request_id}", "REQUEST")
        if item is None:
            return None
        return self._to_request(item)

    def list_requests_for_user(self, user_id: str, status: Optional[str] = None) -> List[Request]:
        """Requests made by a user, newest first, optionally with one status."""
        items = self._query_index(f"USER#{user_id}", status)
        return [self._to_request(item) for item in items]

    def list_requests_for_reviewer(self, reviewer_id: str, status: Optional[str] = None) -> List[Request]:
        """Requests a user is a reviewer of, optionally with one status."""
        requests = []
        for item in self._query_index(f"REVIEWER#{reviewer_id}"):
            request = self.get_request(item["request_id"])
            # the request item may have expired while the reviewer item is still there
            if request is None:
                continue
            if status is None or request.status == status:
                requests.append(request)
        return requests

    def _to_request(self, item: Dict[str, Any]) -> Request:
        return Request(
            id=item["id"],
            requested_by=item["requested_by"],
            subject=item.get("subject", ""),
            rule_id=item["rule_id"],
            rule_version=item["rule_version"],
            status=item["status"],
            timing=Timing(
                duration_seconds=int(item["duration_seconds"]),
                start_time=_parse_iso(item.get("start_time")),
            ),
            arguments=dict(item.get("arguments") or {}),
            grant_id=item.get("grant_id"),
            requested_at=_parse_iso(item.get("requested_at")),
            updated_at=_parse_iso(item.get("updated_at")),
        )

    def _query_index(self, pk: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        """Pages through every item under one partition of the owner index."""
        kwargs = {
            "IndexName": OWNER_INDEX,
            "KeyConditionExpression": "gsi1pk = :pk",
            "ExpressionAttributeValues": {":pk": pk},
            "ScanIndexForward": False,
        }
        if status is not None:
            kwargs["FilterExpression"] = "#s = :status"
            kwargs["ExpressionAttributeNames"] = {"#s": "status"}
            kwargs["ExpressionAttributeValues"][":status"] = status

        items = []
        while True:
            try:
                resp = self.table.query(**kwargs)
            except ClientError as e:
                raise StateStoreError(f"Failed to query {OWNER_INDEX}: {e}") from e
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    # --- reviewers ---

    def save_reviewers(self, reviewers: List[Reviewer]) -> None:
        for reviewer in reviewers:
            self._put({
                "pk": f"REQUEST#{reviewer.request_id}",
                "sk": f"REVIEWER#{reviewer.reviewer_id}",
                "gsi1pk": f"REVIEWER#{reviewer.reviewer_id}",
                "gsi1sk": f"REQUEST#{reviewer.request_id}",
                "request_id": reviewer.request_id,
                "reviewer_id": reviewer.reviewer_id,
            })

    def get_reviewer(self, request_id: str, reviewer_id: str) -> Optional[Reviewer]:
        item = self._get(f"REQUEST#{request_id}", f"REVIEWER#{reviewer_id}")
        if item is None:
            return None
        return Reviewer(request_id=item["request_id"], reviewer_id=item["reviewer_id"])

    # --- access rules ---

    def save_access_rule(self, rule: AccessRule, current: bool = True) -> None:
        item = {
            "pk": f"RULE#{rule.id}",
            "sk": f"VERSION#{rule.version}",
            "id": rule.id,
            "version": rule.version,
            "name": rule.name,
            "description": rule.description,
            "groups": list(rule.groups),
            "provider_id": rule.target.provider_id,
            "provider_type": rule.target.provider_type,
            "with": rule.target.with_,
            "max_duration_seconds": Decimal(str(rule.max_duration_seconds)),
            "approval_users": list(rule.approval.users),
        }
        self._put(item)
        if current:
            self._put(dict(item, sk="CURRENT"))

    def get_access_rule(self, rule_id: str, version: Optional[str] = None) -> Optional[AccessRule]:
        """Fetches a specific rule version, or the current one when version is None."""
        sk = f"VERSION#{version}" if version else "CURRENT"
        item = self._get(f"RULE#{rule_id}", sk)
        if item is None:
            return None
        return AccessRule(
            id=item["id"],
            version=item["version"],
            name=item.get("name", ""),
            description=item.get("description", ""),
            groups=list(item.get("groups") or []),
            target=Target(
                provider_id=item["provider_id"],
                provider_type=item.get("provider_type", ""),
                with_=dict(item.get("with") or {}),
            ),
            max_duration_seconds=int(item["max_duration_seconds"]),
            approval=Approval(users=list(item.get("approval_users") or [])),
        )

    # --- provider option cache ---

    def save_provider_options(self, provider_id: str, arg_id: str, options: List[Option]) -> None:
        self._put({
            "pk": f"OPTIONS#{provider_id}#{arg_id}",
            "sk": "OPTIONS",
            "options": [{"label": o.label, "value": o.value} for o in options],
            "refreshed_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        })

    def get_provider_options(self, provider_id: str, arg_id: str) -> Optional[List[Option]]:
        item = self._get(f"OPTIONS#{provider_id}#{arg_id}", "OPTIONS")
        if item is None:
            return None
        return [Option(label=o["label"], value=o["value"]) for o in item.get("options", [])]
