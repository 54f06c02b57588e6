"""
Input validation utilities for security-critical parameters.
Prevents injection attacks, DoS, and enumeration vulnerabilities.
"""
import re
import math

from grantkeeper.errors import ValidationError

# Absolute ceiling regardless of access rule: 30 days
MAX_DURATION_SECONDS = 720 * 3600


def validate_duration(duration_seconds: float, max_seconds: float = MAX_DURATION_SECONDS) -> float:
    """
    Validates requested access duration.

    Args:
        duration_seconds: Requested duration in seconds
        max_seconds: Largest duration allowed (an access rule's maximum, or the global ceiling)

    Returns:
        Validated duration

    Raises:
        ValidationError: If duration is invalid
    """
    if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, (int, float)):
        raise ValidationError(f"Duration must be a number, got: {duration_seconds!r}")

    if math.isnan(duration_seconds) or math.isinf(duration_seconds):
        raise ValidationError(f"Duration must be a valid number, got: {duration_seconds}")

    if duration_seconds <= 0:
        raise ValidationError(f"Duration must be positive, got: {duration_seconds}")

    # grant windows are whole seconds
    if duration_seconds != int(duration_seconds):
        raise ValidationError(f"Duration must be a whole number of seconds, got: {duration_seconds}")

    limit = min(max_seconds, MAX_DURATION_SECONDS)
    if duration_seconds > limit:
        raise ValidationError(f"Duration exceeds maximum of {limit:g} seconds, got: {duration_seconds:g}")

    return duration_seconds


def validate_account_id(account_id: str) -> str:
    """
    Validates AWS Account ID format.

    Raises:
        ValidationError: If account ID format is invalid
    """
    if not account_id:
        raise ValidationError("Account ID cannot be empty")

    if not re.match(r'^\d{12}$', account_id):
        raise ValidationError(f"Invalid AWS Account ID format. Expected 12 digits, got: {account_id}")

    return account_id


def validate_arn(arn: str, resource_type: str = None) -> str:
    """
    Validates AWS ARN format.

    Args:
        arn: AWS ARN string
        resource_type: Optional service to validate (e.g., 'sso', 'states')

    Raises:
        ValidationError: If ARN format is invalid
    """
    if not arn:
        raise ValidationError("ARN cannot be empty")

    # Support only valid AWS partitions: aws, aws-cn, aws-us-gov
    if not re.match(r'^arn:aws(-cn|-us-gov)?:', arn):
        raise ValidationError(f"Invalid ARN format. Must start with 'arn:aws:', 'arn:aws-cn:', or 'arn:aws-us-gov:', got: {arn}")

    parts = arn.split(":")
    if len(parts) < 6:
        raise ValidationError(f"Invalid ARN format. Expected at least 6 parts, got: {len(parts)}")

    if resource_type and parts[2] != resource_type:
        raise ValidationError(f"Expected ARN for {resource_type}, got: {parts[2]}")

    return arn


def validate_grant_id(grant_id: str) -> str:
    """
    Grant IDs double as Step Functions execution names: 1-80 characters of
    letters, digits, '-' and '_'.
    """
    if not grant_id:
        raise ValidationError("Grant ID cannot be empty")

    if not re.match(r'^[A-Za-z0-9_-]{1,80}$', grant_id):
        raise ValidationError(f"Invalid grant ID format: {grant_id}")

    return grant_id
