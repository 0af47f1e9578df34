"""
StubTap CLI

Command-line access to the data generators and the contract validator.

Commands:
    generate    - Synthesize values for a named schema (or an endpoint response)
    relational  - Synthesize related entity sets from a YAML/JSON plan
    validate    - Validate a recorded response against a contract

Examples:
    # Five users from a contract's components
    stubtap generate contract.yaml --schema User --count 5 --seed 1

    # A full 200 response for an operation
    stubtap generate contract.yaml --endpoint "GET /users/{id}" --status 200

    # Users and their orders with referential integrity
    stubtap relational plan.yaml

    # Check a captured response for drift
    stubtap validate contract.yaml response.json --method GET --path /users/42
"""

import argparse
import json
import logging
import random
import sys
from typing import Any, Dict, List, Optional

from .common.errors import StubTapError
from .common.utils import DocumentLoader
from .contract.loader import find_endpoint, load_contract
from .contract.validator import ContractValidator
from .schema.generator import DEFAULT_MAX_DEPTH, DataGenerator
from .schema.model import SchemaNode, SchemaRegistry
from .schema.relational import RelationalDataGenerator


def _emit(data: Any):
    print(json.dumps(data, indent=2))


def _fail(message: str) -> int:
    print(f"❌ {message}", file=sys.stderr)
    return 1


def cmd_generate(args) -> int:
    """
    Synthesize values from a contract.

    Args:
        args: Parsed command-line arguments
    """
    endpoints, registry = load_contract(DocumentLoader(args.contract).load())
    generator = DataGenerator(registry, max_depth=args.max_depth)
    rng = random.Random(args.seed)

    if args.endpoint:
        method, _, path = args.endpoint.partition(' ')
        endpoint = endpoints.get((method.upper(), path.strip()))
        if endpoint is None:
            return _fail(f"Operation not found in contract: {args.endpoint}")
        spec = endpoint.response_for(args.status)
        if spec is None:
            return _fail(f"Status {args.status} is not declared for {args.endpoint}")
        results = []
        for _ in range(args.count):
            headers, body = spec.synthesize(generator, rng)
            results.append({'status': int(args.status), 'headers': headers, 'body': body})
    elif args.schema:
        results = [generator.generate_named(args.schema, rng) for _ in range(args.count)]
    else:
        return _fail("Pass --schema NAME or --endpoint \"METHOD /path\"")

    _emit(results if args.count != 1 else results[0])
    return 0


def cmd_relational(args) -> int:
    """
    Synthesize related entity collections from a plan file.

    Plan keys:
        schemas: named schemas usable through ``ref``
        entities: entity type -> {schema: <schema dict or name>, count: N}
        relationships: list of relationship dicts
        seed: optional seed (``--seed`` wins)
    """
    plan = DocumentLoader(args.plan).load() or {}
    registry = SchemaRegistry.from_components(plan.get('schemas') or {})

    entity_schemas: Dict[str, Any] = {}
    counts: Dict[str, int] = {}
    for entity_type, entry in (plan.get('entities') or {}).items():
        schema = entry.get('schema', {'kind': 'object'})
        entity_schemas[entity_type] = SchemaNode(kind='ref', ref=schema) if isinstance(schema, str) else schema
        counts[entity_type] = int(entry.get('count', 1))

    seed = args.seed if args.seed is not None else plan.get('seed')
    relational = RelationalDataGenerator(DataGenerator(registry, max_depth=args.max_depth))
    _emit(relational.generate(entity_schemas, counts, plan.get('relationships') or [], random.Random(seed)))
    return 0


def cmd_validate(args) -> int:
    """
    Validate a recorded response (``{"status", "headers", "body"}``) against a contract.

    Exit code is 0 when the response is valid, 1 otherwise.
    """
    endpoints, registry = load_contract(DocumentLoader(args.contract).load())
    endpoint = find_endpoint(endpoints, args.method, args.path)
    if endpoint is None:
        return _fail(f"No contract operation matches {args.method.upper()} {args.path}")

    recorded = DocumentLoader(args.response).load() or {}
    validator = ContractValidator(registry, max_depth=args.max_depth)
    result = validator.validate_response(
        endpoint,
        recorded.get('status', 200),
        recorded.get('headers') or {},
        recorded.get('body')
    )
    _emit(result.to_dict())
    return 0 if result.valid else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='stubtap',
        description="StubTap - schema-driven data synthesis and contract validation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s generate contract.yaml --schema User --count 3 --seed 7
  %(prog)s relational plan.yaml --seed 1
  %(prog)s validate contract.yaml response.json --method GET --path /users/1
        """
    )
    parser.add_argument('--log-level', default='warning', choices=['debug', 'info', 'warning', 'error'],
                        help='Logging level (default: warning)')
    parser.add_argument('--max-depth', type=int, default=DEFAULT_MAX_DEPTH,
                        help=f'Maximum $ref depth (default: {DEFAULT_MAX_DEPTH})')

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # --- GENERATE command ---
    generate_parser = subparsers.add_parser('generate', help='Synthesize values from a contract')
    generate_parser.add_argument('contract', help='Contract document (YAML or JSON)')
    generate_parser.add_argument('-s', '--schema', help='Named schema to generate')
    generate_parser.add_argument('-e', '--endpoint', help='Operation as "METHOD /path/template"')
    generate_parser.add_argument('--status', default='200', help='Response status for --endpoint (default: 200)')
    generate_parser.add_argument('-n', '--count', type=int, default=1, help='Number of values (default: 1)')
    generate_parser.add_argument('--seed', type=int, help='Seed for reproducible output')

    # --- RELATIONAL command ---
    relational_parser = subparsers.add_parser('relational', help='Synthesize related entity sets')
    relational_parser.add_argument('plan', help='Plan document (YAML or JSON)')
    relational_parser.add_argument('--seed', type=int, help='Seed for reproducible output')

    # --- VALIDATE command ---
    validate_parser = subparsers.add_parser('validate', help='Validate a recorded response')
    validate_parser.add_argument('contract', help='Contract document (YAML or JSON)')
    validate_parser.add_argument('response', help='Recorded response JSON/YAML with status, headers, body')
    validate_parser.add_argument('-m', '--method', default='GET', help='Request method (default: GET)')
    validate_parser.add_argument('-p', '--path', required=True, help='Concrete request path')

    return parser


COMMANDS = {
    'generate': cmd_generate,
    'relational': cmd_relational,
    'validate': cmd_validate,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level.upper()), format='%(levelname)s %(name)s: %(message)s')

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return handler(args)
    except (StubTapError, FileNotFoundError, ValueError) as e:
        return _fail(str(e))


if __name__ == '__main__':
    sys.exit(main())
