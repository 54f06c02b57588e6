import boto3
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

from botocore.exceptions import ClientError

from grantkeeper.adapters.aws_errors import error_code
from grantkeeper.errors import ConflictError, GrantNotFoundError, ValidationError
from grantkeeper.validators import validate_arn, validate_grant_id

logger = logging.getLogger(__name__)


class ExecutionStatus:
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    ABORTED = "ABORTED"


@dataclass
class ExecutionDescription:
    arn: str
    status: str
    input: str

    @property
    def running(self) -> bool:
        return self.status == ExecutionStatus.RUNNING


def execution_arn(state_machine_arn: str, grant_id: str) -> str:
    """
    Maps a grant ID to the ARN of its execution on the granter state machine.

    eg state machine: arn:aws:states:us-east-1:123456789012:stateMachine:Granter
       execution:     arn:aws:states:us-east-1:123456789012:execution:Granter:{grant_id}
    """
    parts = validate_arn(state_machine_arn, "states").split(":")
    if len(parts) < 7:
        raise ValidationError(f"State machine ARN has no name segment: {state_machine_arn}")
    # position 5 is the resource type
    parts[5] = "execution"
    parts.append(grant_id)
    return ":".join(parts)


class StepFunctionsEngine:
    """
    The durable execution engine holding every in-flight grant.
    One execution per grant, named by the grant ID.
    """
    def __init__(self, state_machine_arn: str, client=None):
        self.state_machine_arn = validate_arn(state_machine_arn, "states")
        self.client = client or boto3.client("stepfunctions")

    def __repr__(self):
        return f"StepFunctionsEngine(state_machine={self.state_machine_arn})"

    def execution_arn(self, grant_id: str) -> str:
        return execution_arn(self.state_machine_arn, grant_id)

    def start(self, grant_id: str, input_json: str) -> str:
        validate_grant_id(grant_id)
        try:
            resp = self.client.start_execution(
                stateMachineArn=self.state_machine_arn,
                name=grant_id,
                input=input_json,
            )
        except ClientError as e:
            if error_code(e) == "ExecutionAlreadyExists":
                raise ConflictError(f"an execution already exists for grant {grant_id}") from e
            raise
        logger.info(f"Started execution for grant {grant_id}")
        return resp["executionArn"]

    def describe(self, grant_id: str) -> ExecutionDescription:
        arn = self.execution_arn(grant_id)
        try:
            resp = self.client.describe_execution(executionArn=arn)
        except ClientError as e:
            if error_code(e) == "ExecutionDoesNotExist":
                raise GrantNotFoundError(grant_id) from e
            raise
        return ExecutionDescription(arn=arn, status=resp["status"], input=resp.get("input", ""))

    def history(self, grant_id: str, reverse: bool = False) -> Iterator[Dict[str, Any]]:
        """Yields history events page by page until the continuation token runs out."""
        arn = self.execution_arn(grant_id)
        next_token = None
        while True:
            kwargs = {"executionArn": arn, "reverseOrder": reverse}
            if next_token:
                kwargs["nextToken"] = next_token
            try:
                resp = self.client.get_execution_history(**kwargs)
            except ClientError as e:
                if error_code(e) == "ExecutionDoesNotExist":
                    raise GrantNotFoundError(grant_id) from e
                raise
            for event in resp.get("events", []):
                yield event
            next_token = resp.get("nextToken")
            if not next_token:
                return

    def current_state(self, grant_id: str) -> Optional[str]:
        """Name of the most recently entered state, or None if none was entered yet."""
        for event in self.history(grant_id, reverse=True):
            if event.get("type", "").endswith("StateEntered"):
                return event.get("stateEnteredEventDetails", {}).get("name")
        return None

    def stop(self, grant_id: str, cause: str = "") -> None:
        try:
            self.client.stop_execution(executionArn=self.execution_arn(grant_id), cause=cause[:32768])
        except ClientError as e:
            if error_code(e) == "ExecutionDoesNotExist":
                raise GrantNotFoundError(grant_id) from e
            raise
        logger.info(f"Stopped execution for grant {grant_id}")
