"""
Amazon States Language document for the granter state machine.

    Wait for Window Start -> Activate Grant -> Wait for Window End -> Expire Grant

Both task states invoke grant_handler.lambda_handler. A failed task is caught
and ends the execution in the "Grant Failed" state, which the granter reads
back as an ERROR grant.
"""
import json
from typing import Any, Dict, Optional

WAIT_FOR_WINDOW_START = "Wait for Window Start"
ACTIVATE_GRANT = "Activate Grant"
WAIT_FOR_WINDOW_END = "Wait for Window End"
EXPIRE_GRANT = "Expire Grant"
GRANT_FAILED = "Grant Failed"


def _task(function_arn: str, action: str, next_state: Optional[str]) -> Dict[str, Any]:
    state = {
        "Type": "Task",
        "Resource": "arn:aws:states:::lambda:invoke",
        "Parameters": {
            "FunctionName": function_arn,
            "Payload": {"action": action, "grant.$": "$.grant"},
        },
        # keep {"grant": {...}} as the state so the next Wait can read $.grant.end
        "ResultSelector": {"grant.$": "$.Payload.grant"},
        "Retry": [
            {
                "ErrorEquals": ["Lambda.ServiceException", "Lambda.TooManyRequestsException"],
                "IntervalSeconds": 2,
                "MaxAttempts": 3,
                "BackoffRate": 2.0,
            }
        ],
        "Catch": [{"ErrorEquals": ["States.ALL"], "ResultPath": "$.error", "Next": GRANT_FAILED}],
    }
    if next_state:
        state["Next"] = next_state
    else:
        state["End"] = True
    return state


def build_definition(function_arn: str) -> Dict[str, Any]:
    """Builds the state machine definition wired to the grant handler Lambda."""
    return {
        "Comment": "Grantkeeper: provisions a grant for its window and revokes it afterwards",
        "StartAt": WAIT_FOR_WINDOW_START,
        "States": {
            WAIT_FOR_WINDOW_START: {
                "Type": "Wait",
                "TimestampPath": "$.grant.start",
                "Next": ACTIVATE_GRANT,
            },
            ACTIVATE_GRANT: _task(function_arn, "activate", WAIT_FOR_WINDOW_END),
            WAIT_FOR_WINDOW_END: {
                "Type": "Wait",
                "TimestampPath": "$.grant.end",
                "Next": EXPIRE_GRANT,
            },
            EXPIRE_GRANT: _task(function_arn, "expire", None),
            GRANT_FAILED: {
                "Type": "Fail",
                "Error": "GrantFailed",
                "Cause": "A provider call failed while activating or expiring the grant",
            },
        },
    }


def definition_json(function_arn: str) -> str:
    return json.dumps(build_definition(function_arn), indent=2)
