import argparse
import logging
import sys

from botocore.exceptions import BotoCoreError, ClientError

from grantkeeper.adapters.state_store import StateStore
from grantkeeper.adapters.step_functions import StepFunctionsEngine
from grantkeeper.config import load_config
from grantkeeper.core.context import Context
from grantkeeper.core.granter import Granter
from grantkeeper.core.option_cache import ProviderOptionCache
from grantkeeper.errors import GrantkeeperError, NotFoundError, ValidationError
from grantkeeper.providers.registry import ProviderRegistry
from grantkeeper.ui.printer import print_grant, print_instructions, print_is_active, print_options
from grantkeeper.validators import validate_arn, validate_grant_id
from grantkeeper.workflows.definition import definition_json

logger = logging.getLogger("grantkeeper")

# Exit codes
EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_INVALID = 2
EXIT_INFRA = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="grantkeeper", description="Grantkeeper: time-bound access grants (operator CLI)")
    parser.add_argument("--config", help="Path to the grantkeeper YAML config (default: $GRANTKEEPER_CONFIG_PATH)")
    parser.add_argument("--debug", action="store_true", help="Enable verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    describe = sub.add_parser("describe", help="Show a grant and its derived status")
    describe.add_argument("grant_id")

    revoke = sub.add_parser("revoke", help="Revoke a grant early")
    revoke.add_argument("grant_id")
    revoke.add_argument("--revoker", required=True, help="Who is revoking (recorded as the stop cause)")

    is_active = sub.add_parser("is-active", help="Ask the provider whether the grant's access exists")
    is_active.add_argument("grant_id")

    instructions = sub.add_parser("instructions", help="Print how to use a grant's access")
    instructions.add_argument("grant_id")

    options = sub.add_parser("options", help="List the legal values of a provider argument")
    options.add_argument("provider_id")
    options.add_argument("arg_id")
    options.add_argument("--cached", action="store_true", help="Read through the DynamoDB option cache")
    options.add_argument("--refresh", action="store_true", help="Re-query the provider and update the cache")

    definition = sub.add_parser("definition", help="Print the state machine definition (ASL JSON)")
    definition.add_argument("--function-arn", required=True, help="ARN of the grant handler Lambda")
    return parser


def _granter(config, registry: ProviderRegistry) -> Granter:
    state_machine_arn = config.settings.get("state_machine_arn")
    if not state_machine_arn:
        raise ValidationError("settings.state_machine_arn is not configured")
    return Granter(StepFunctionsEngine(state_machine_arn), registry)


def run(args) -> int:
    if args.command == "definition":
        print(definition_json(validate_arn(args.function_arn, "lambda")))
        return EXIT_OK

    config = load_config(args.config)
    logger.info(f"Loaded config (hash: {config.config_hash[:12]})")
    registry = ProviderRegistry.from_config(config.data)
    ctx = Context.background()

    if args.command == "options":
        if args.cached or args.refresh:
            cache = ProviderOptionCache(registry, StateStore(table_name=config.settings.get("dynamodb_table")))
            opts = cache.refresh(ctx, args.provider_id, args.arg_id) if args.refresh else \
                cache.load(ctx, args.provider_id, args.arg_id)
        else:
            registered = registry.lookup(args.provider_id)
            if not registered.supports_options:
                raise ValidationError(f"provider {args.provider_id} does not list options for its arguments")
            opts = registered.provider.options(ctx, args.arg_id)
        print_options(args.provider_id, args.arg_id, opts)
        return EXIT_OK

    grant_id = validate_grant_id(args.grant_id)
    granter = _granter(config, registry)

    if args.command == "describe":
        print_grant(granter.describe_grant(ctx, grant_id), verbose=args.debug)
    elif args.command == "revoke":
        grant = granter.revoke_grant(ctx, grant_id, revoker=args.revoker)
        print_grant(grant, verbose=args.debug)
    elif args.command == "is-active":
        print_is_active(grant_id, granter.is_active(ctx, grant_id))
    elif args.command == "instructions":
        print_instructions(grant_id, granter.instructions(ctx, grant_id))
    return EXIT_OK


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(level=log_level, format='%(asctime)s - %(levelname)s - %(message)s')

    try:
        return run(args)
    except (ValidationError, NotFoundError) as e:
        logger.error(f"{e}")
        return EXIT_INVALID
    except (ClientError, BotoCoreError) as e:
        logger.error(f"AWS Infrastructure Error: {e}")
        return EXIT_INFRA
    except GrantkeeperError as e:
        logger.error(f"Grantkeeper Error: {e}")
        return EXIT_INFRA
    except Exception:
        logger.exception("Unexpected System Failure")
        return EXIT_UNEXPECTED


if __name__ == "__main__":
    sys.exit(main())
