"""
Lambda invoked by the granter state machine at the start and at the end of a
grant's time window.

    {"action": "activate", "grant": {...}}  -> Provider.grant,  returns ACTIVE
    {"action": "expire",   "grant": {...}}  -> Provider.revoke, returns EXPIRED

Errors are raised so the state machine retries, then fails the execution.
"""
import logging
import os
from typing import Any, Dict

from grantkeeper.config import load_config
from grantkeeper.core.context import Context
from grantkeeper.errors import GrantkeeperError, ValidationError
from grantkeeper.models.grant import Grant, GrantStatus
from grantkeeper.providers.registry import ProviderRegistry

logger = logging.getLogger()
logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())

ACTIVATE = "activate"
EXPIRE = "expire"

# --- WARM START CACHE ---
CACHED_REGISTRY = None


class WorkflowBootstrapError(GrantkeeperError):
    """The handler could not be configured; nothing was provisioned."""
    pass


def _bootstrap_registry() -> ProviderRegistry:
    global CACHED_REGISTRY
    if CACHED_REGISTRY is not None:
        return CACHED_REGISTRY

    logger.info("Cold Start: Loading provider registry from config...")
    try:
        config = load_config()
    except (OSError, GrantkeeperError) as e:
        raise WorkflowBootstrapError(f"Failed to load grantkeeper config: {e}") from e
    logger.info(f"Loaded config (hash: {config.config_hash[:12]})")

    CACHED_REGISTRY = ProviderRegistry.from_config(config.data)
    return CACHED_REGISTRY


def handle(ctx: Context, registry: ProviderRegistry, event: Dict[str, Any]) -> Dict[str, Any]:
    action = (event or {}).get("action")
    if action not in (ACTIVATE, EXPIRE):
        raise ValidationError(f"unknown grant action: {action}")

    grant = Grant.from_dict((event or {}).get("grant") or {})
    provider = registry.get(grant.provider)

    if action == ACTIVATE:
        logger.info(f"Activating grant {grant.id} on provider {grant.provider}")
        provider.grant(ctx, grant.subject, grant.args_json(), grant.id)
        grant.transition(GrantStatus.ACTIVE)
    else:
        logger.info(f"Expiring grant {grant.id} on provider {grant.provider}")
        # input still says PENDING when invoked outside the state machine
        if grant.status == GrantStatus.PENDING:
            grant.transition(GrantStatus.ACTIVE)
        provider.revoke(ctx, grant.subject, grant.args_json(), grant.id)
        grant.transition(GrantStatus.EXPIRED)

    logger.info(f"Grant {grant.id} is now {grant.status}")
    return {"grant": grant.to_dict()}


def lambda_handler(event, context):
    """
    Lambda entry point for grant activation and expiry.

    Args:
        event: {"action": ..., "grant": {...}} built by the state machine
        context: Lambda context object (used for the remaining time budget)
    """
    registry = _bootstrap_registry()
    ctx = Context.from_lambda(context)
    try:
        return handle(ctx, registry, event)
    except Exception as e:
        logger.error(f"Grant action {(event or {}).get('action')} failed: {e}")
        raise
