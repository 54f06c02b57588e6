"""
Unit tests for the DynamoDB state store, the option cache and audit publishing.
"""
import datetime
import json
from decimal import Decimal

import pytest

from conftest import client_error
from grantkeeper.adapters.event_bus import EventBusPublisher
from grantkeeper.adapters.state_store import StateStore, StateStoreError
from grantkeeper.core.option_cache import ProviderOptionCache
from grantkeeper.errors import ValidationError
from grantkeeper.models.events import GrantRevoked
from grantkeeper.models.request import AccessRule, Approval, Request, Reviewer, Target, Timing
from grantkeeper.providers.base import Option
from grantkeeper.providers.registry import ProviderRegistry, RegisteredProvider


class _FakeTable:
    def __init__(self):
        self.items = {}
        self.fail = False
        self.queries = []

    def put_item(self, Item):  # noqa: N803 - boto3 shape
        if self.fail:
            raise client_error("ProvisionedThroughputExceededException", operation="PutItem")
        self.items[(Item["pk"], Item["sk"])] = Item

    def get_item(self, Key):  # noqa: N803
        item = self.items.get((Key["pk"], Key["sk"]))
        return {"Item": item} if item else {}

    def query(self, IndexName, KeyConditionExpression, ExpressionAttributeValues,  # noqa: N803
              ScanIndexForward=True, FilterExpression=None, ExpressionAttributeNames=None,
              ExclusiveStartKey=None):
        if self.fail:
            raise client_error("ProvisionedThroughputExceededException", operation="Query")
        self.queries.append(IndexName)
        matched = sorted(
            (item for item in self.items.values() if item.get("gsi1pk") == ExpressionAttributeValues[":pk"]),
            key=lambda item: item["gsi1sk"],
            reverse=not ScanIndexForward,
        )
        # one item per page, filtered after the page is read like DynamoDB does
        index = int(ExclusiveStartKey["index"]) if ExclusiveStartKey else 0
        page = matched[index:index + 1]
        if FilterExpression:
            page = [item for item in page if item[ExpressionAttributeNames["#s"]] == ExpressionAttributeValues[":status"]]
        resp = {"Items": page}
        if index + 1 < len(matched):
            resp["LastEvaluatedKey"] = {"index": index + 1}
        return resp


@pytest.fixture
def table():
    return _FakeTable()


@pytest.fixture
def state_store(table):
    return StateStore(table_name="grantkeeper-test", table=table)


def _rule(version="v1", family="web"):
    return AccessRule(
        id="rule-ecs",
        version=version,
        name="ECS shell",
        groups=["developers"],
        target=Target(provider_id="ecs-shell", provider_type="aws-ecs-shell-sso",
                      with_={"taskDefinitionFamily": family}),
        max_duration_seconds=3600,
        approval=Approval(users=["u-bob"]),
    )


class TestStateStore:
    def test_request_round_trip(self, state_store, table):
        now = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.timezone.utc)
        request = Request(
            id="req_1", requested_by="u-alice", subject="alice@example.com", rule_id="rule-ecs",
            rule_version="v1", timing=Timing(duration_seconds=1800), arguments={"reason": "incident"},
            requested_at=now, updated_at=now,
        )

        state_store.save_request(request)
        loaded = state_store.get_request("req_1")

        assert loaded == request
        assert isinstance(table.items[("REQUEST#req_1", "REQUEST")]["duration_seconds"], Decimal)

    def test_missing_items_return_none(self, state_store):
        assert state_store.get_request("req_missing") is None
        assert state_store.get_reviewer("req_missing", "u-bob") is None
        assert state_store.get_access_rule("rule-missing") is None
        assert state_store.get_provider_options("ecs-shell", "taskDefinitionFamily") is None

    def test_reviewers(self, state_store):
        state_store.save_reviewers([Reviewer("req_1", "u-bob"), Reviewer("req_1", "u-carol")])

        assert state_store.get_reviewer("req_1", "u-carol") == Reviewer("req_1", "u-carol")

    def test_rule_versions_are_kept(self, state_store):
        state_store.save_access_rule(_rule("v1", "web"))
        state_store.save_access_rule(_rule("v2", "admin"))

        assert state_store.get_access_rule("rule-ecs").version == "v2"
        pinned = state_store.get_access_rule("rule-ecs", "v1")
        assert pinned.target.with_ == {"taskDefinitionFamily": "web"}
        assert pinned.approval.users == ["u-bob"]
        assert pinned.max_duration == datetime.timedelta(hours=1)

    def test_write_failure_is_wrapped(self, state_store, table):
        table.fail = True

        with pytest.raises(StateStoreError, match="Failed to save state"):
            state_store.save_reviewers([Reviewer("req_1", "u-bob")])

    def _save(self, state_store, request_id, requested_by, minute, status="PENDING", reviewers=("u-bob",)):
        at = datetime.datetime(2026, 3, 1, 12, minute, tzinfo=datetime.timezone.utc)
        state_store.save_request(Request(
            id=request_id, requested_by=requested_by, subject=f"{requested_by}@example.com", rule_id="rule-ecs",
            rule_version="v1", timing=Timing(duration_seconds=600), status=status,
            requested_at=at, updated_at=at,
        ))
        state_store.save_reviewers([Reviewer(request_id, r) for r in reviewers])

    @pytest.fixture
    def listed(self, state_store):
        self._save(state_store, "req_1", "u-alice", 0, status="DECLINED")
        self._save(state_store, "req_2", "u-alice", 1)
        self._save(state_store, "req_3", "u-mallory", 2)

    def test_requests_for_user_newest_first(self, state_store, table, listed):
        requests = state_store.list_requests_for_user("u-alice")

        assert [r.id for r in requests] == ["req_2", "req_1"]
        assert set(table.queries) == {"gsi1"}

    def test_requests_for_user_by_status(self, state_store, listed):
        requests = state_store.list_requests_for_user("u-alice", status="DECLINED")

        assert [r.id for r in requests] == ["req_1"]
        assert requests[0].status == "DECLINED"

    def test_requests_for_reviewer(self, state_store, listed):
        requests = state_store.list_requests_for_reviewer("u-bob")

        assert sorted(r.id for r in requests) == ["req_1", "req_2", "req_3"]

    def test_requests_for_reviewer_by_status(self, state_store, listed):
        requests = state_store.list_requests_for_reviewer("u-bob", status="PENDING")

        assert sorted(r.id for r in requests) == ["req_2", "req_3"]

    def test_reviewer_item_without_request_is_skipped(self, state_store, table, listed):
        del table.items[("REQUEST#req_3", "REQUEST")]

        assert sorted(r.id for r in state_store.list_requests_for_reviewer("u-bob")) == ["req_1", "req_2"]

    def test_query_failure_is_wrapped(self, state_store, table):
        table.fail = True

        with pytest.raises(StateStoreError, match="Failed to query gsi1"):
            state_store.list_requests_for_user("u-alice")


class _OptionProvider:
    def __init__(self):
        self.calls = 0

    def options(self, ctx, arg_id):
        self.calls += 1
        return [Option(label="web", value="web"), Option(label="worker", value="worker")]


class _PlainProvider:
    def grant(self, ctx, subject, args, grant_id):
        pass


class TestProviderOptionCache:
    @pytest.fixture
    def provider(self):
        return _OptionProvider()

    @pytest.fixture
    def cache(self, provider, state_store):
        registry = ProviderRegistry({
            "ecs-shell": RegisteredProvider(id="ecs-shell", type="aws-ecs-shell-sso", provider=provider),
            "plain": RegisteredProvider(id="plain", type="testvault", provider=_PlainProvider()),
        })
        return ProviderOptionCache(registry, state_store)

    def test_load_reads_through_once(self, cache, provider, ctx):
        first = cache.load(ctx, "ecs-shell", "taskDefinitionFamily")
        second = cache.load(ctx, "ecs-shell", "taskDefinitionFamily")

        assert first == second
        assert [o.value for o in second] == ["web", "worker"]
        assert provider.calls == 1

    def test_refresh_always_queries_provider(self, cache, provider, ctx):
        cache.load(ctx, "ecs-shell", "taskDefinitionFamily")
        cache.refresh(ctx, "ecs-shell", "taskDefinitionFamily")

        assert provider.calls == 2

    def test_provider_without_options(self, cache, ctx):
        with pytest.raises(ValidationError, match="does not list options"):
            cache.load(ctx, "plain", "anything")


class _FakeEvents:
    def __init__(self, error=None, failed=0):
        self.error = error
        self.failed = failed
        self.entries = []

    def put_events(self, Entries):  # noqa: N803
        if self.error:
            raise self.error
        self.entries.extend(Entries)
        return {"FailedEntryCount": self.failed, "Entries": [{}] * len(Entries)}


class TestEventBusPublisher:
    def test_publishes_typed_detail(self):
        client = _FakeEvents()
        EventBusPublisher("audit", client=client).put(GrantRevoked("req_1", "gra_1", "u-bob"))

        (entry,) = client.entries
        assert entry["Source"] == "grantkeeper"
        assert entry["DetailType"] == "grant.revoked"
        assert entry["EventBusName"] == "audit"
        assert json.loads(entry["Detail"]) == {"request_id": "req_1", "grant_id": "gra_1", "revoked_by": "u-bob"}

    def test_failures_are_logged_not_raised(self, caplog):
        client = _FakeEvents(error=client_error("AccessDeniedException", operation="PutEvents"))

        EventBusPublisher(client=client).put(GrantRevoked("req_1", "gra_1", "u-bob"))

        assert "Failed to publish grant.revoked" in caplog.text

    def test_rejected_entries_are_logged(self, caplog):
        EventBusPublisher(client=_FakeEvents(failed=1)).put(GrantRevoked("req_1", "gra_1", "u-bob"))

        assert "rejected grant.revoked" in caplog.text
