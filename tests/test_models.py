"""
Unit tests for grant status transitions and the workflow input format.
"""
import datetime
import json

import pytest

from grantkeeper.errors import ValidationError
from grantkeeper.models.grant import Grant, GrantStatus, WorkflowInput
from grantkeeper.models.request import Request, RequestStatus, Timing


def _grant(status=GrantStatus.PENDING):
    return Grant(
        id="gra_abc",
        provider="ecs-shell",
        subject="alice@example.com",
        with_={"taskDefinitionFamily": "web"},
        status=status,
        start=datetime.datetime(2026, 1, 1, 9, 0, tzinfo=datetime.timezone.utc),
        end=datetime.datetime(2026, 1, 1, 10, 0, tzinfo=datetime.timezone.utc),
    )


class TestGrantTransitions:
    def test_forward_transitions(self):
        grant = _grant()
        grant.transition(GrantStatus.ACTIVE)
        grant.transition(GrantStatus.EXPIRED)

        assert grant.status == GrantStatus.EXPIRED

    def test_pending_can_be_revoked(self):
        grant = _grant()
        grant.transition(GrantStatus.REVOKED)

        assert grant.status == GrantStatus.REVOKED

    @pytest.mark.parametrize("terminal", GrantStatus.TERMINAL)
    def test_terminal_states_are_final(self, terminal):
        grant = _grant(status=terminal)

        for target in (GrantStatus.PENDING, GrantStatus.ACTIVE):
            with pytest.raises(ValidationError):
                grant.transition(target)

    def test_never_back_to_pending(self):
        with pytest.raises(ValidationError):
            _grant(status=GrantStatus.ACTIVE).transition(GrantStatus.PENDING)

    def test_unknown_status(self):
        with pytest.raises(ValidationError):
            _grant().transition("PAUSED")


class TestWorkflowInput:
    def test_json_shape(self):
        payload = json.loads(WorkflowInput(_grant()).to_json())

        assert payload == {
            "grant": {
                "id": "gra_abc",
                "provider": "ecs-shell",
                "subject": "alice@example.com",
                "with": {"taskDefinitionFamily": "web"},
                "status": "PENDING",
                "start": "2026-01-01T09:00:00Z",
                "end": "2026-01-01T10:00:00Z",
            }
        }

    def test_parses_execution_input(self):
        grant = WorkflowInput.from_json(WorkflowInput(_grant()).to_json()).grant

        assert grant.end == datetime.datetime(2026, 1, 1, 10, 0, tzinfo=datetime.timezone.utc)
        assert grant.with_ == {"taskDefinitionFamily": "web"}

    @pytest.mark.parametrize("raw", ["not json", "[]", '{"grant": "x"}', '{"grant": {"id": "gra_1"}}'])
    def test_rejects_malformed_input(self, raw):
        with pytest.raises(ValidationError):
            WorkflowInput.from_json(raw)

    def test_args_json_is_stable(self):
        grant = _grant()
        grant.with_ = {"b": "2", "a": "1"}

        assert grant.args_json() == '{"a": "1", "b": "2"}'


class TestRequest:
    def test_ids_are_prefixed_and_unique(self):
        ids = {Request.create_id() for _ in range(50)}

        assert len(ids) == 50
        assert all(i.startswith("req_") for i in ids)

    def test_terminal_statuses(self):
        request = Request(id="req_1", requested_by="u", subject="u@example.com", rule_id="r",
                          rule_version="v1", timing=Timing(duration_seconds=60))

        assert not request.is_terminal()
        for status in (RequestStatus.DECLINED, RequestStatus.CANCELLED, RequestStatus.REVOKED):
            request.status = status
            assert request.is_terminal()
        assert request.timing.duration == datetime.timedelta(seconds=60)
