import boto3
import logging
import re
from typing import Any, Dict

from grantkeeper.adapters.aws_errors import THROTTLING_CODES, has_code
from grantkeeper.core import retry
from grantkeeper.core.context import Context
from grantkeeper.errors import AmbiguousUserError, UserNotFoundError, ValidationError

logger = logging.getLogger(__name__)

THROTTLE_BACKOFF = retry.Backoff(initial=1.0, max_duration=10.0)


class IdentityStoreAdapter:
    def __init__(self, identity_store_id: str, client=None):
        """
        Initializes the Identity Store Adapter.
        Requires the AWS SSO Identity Store ID (e.g., d-1234567890).

        Args:
            identity_store_id: AWS Identity Store ID
            client: Optional boto3 'identitystore' client (injected in tests)
        """
        if not identity_store_id or not identity_store_id.startswith("d-"):
            raise ValidationError("A valid Identity Store ID (d-...) is required.")

        self.identity_store_id = identity_store_id
        self.client = client or boto3.client("identitystore")

    def __repr__(self):
        return f"IdentityStoreAdapter(store_id={self.identity_store_id})"

    def get_user(self, ctx: Context, email: str) -> Dict[str, Any]:
        """
        Looks up exactly one Identity Center user whose UserName equals `email`.

        Raises:
            UserNotFoundError: No user matched.
            AmbiguousUserError: More than one user matched.
        """
        if not email or not re.match(r"^[^@]+@[^@]+\.[^@]+$", email):
            raise ValidationError(f"Invalid email address format: {email}")

        def list_users(_ctx: Context) -> list:
            response = self.client.list_users(
                IdentityStoreId=self.identity_store_id,
                Filters=[{"AttributePath": "UserName", "AttributeValue": email}],
            )
            return response.get("Users", [])

        # Identity Store throttles aggressively; retry those, fail on anything else
        users = retry.do(ctx, list_users, THROTTLE_BACKOFF, is_retryable=has_code(THROTTLING_CODES))

        if not users:
            logger.warning("User not found in Identity Store")
            raise UserNotFoundError(email)
        if len(users) > 1:
            # this should never happen as UserName is unique, but check it anyway
            raise AmbiguousUserError(email, len(users))

        logger.debug("Successfully resolved email to Identity Store user")
        return users[0]

    def get_user_id(self, ctx: Context, email: str) -> str:
        return self.get_user(ctx, email)["UserId"]
