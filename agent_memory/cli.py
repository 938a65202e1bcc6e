"""
CLI driver over the memory service.

Usage:
    agent-memory --db data/memory/memory.db --dim 3 session --user alice
    agent-memory --db data/memory/memory.db --dim 3 remember --session sess_x --content "hi" --vector "[0.1, 0.2, 0.3]"
    agent-memory --db data/memory/memory.db --dim 3 recall --vector "[0.1, 0.2, 0.3]" -k 5
    agent-memory --db data/memory/memory.db --dim 3 update --record mem_x --content "hello"
    agent-memory --db data/memory/memory.db --dim 3 forget --record mem_x
    agent-memory --db data/memory/memory.db --dim 3 stats
"""

import argparse
import json
import sys
from typing import List, Optional

from agent_memory.config.settings import IndexConfig, Settings, StorageConfig, load_settings
from agent_memory.errors import AgentMemoryError, PartialFailure
from agent_memory.memory.service import MemoryService, create_memory_service
from agent_memory.telemetry import get_logger, new_run_id


def parse_vector(raw: str) -> List[float]:
    """Parse a JSON array or comma-separated list of floats."""
    raw = raw.strip()
    try:
        if raw.startswith("["):
            return [float(x) for x in json.loads(raw)]
        return [float(x) for x in raw.split(",") if x.strip()]
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid vector {raw!r}: {e}") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agent-memory", description="Long-term memory for agents")
    parser.add_argument("--config", type=str, default=None, help="Settings JSON file")
    parser.add_argument("--db", type=str, default=None, help="SQLite database path")
    parser.add_argument("--dim", type=int, default=None, help="Vector dimensionality")
    parser.add_argument("--metric", type=str, default=None, help="cosine, euclidean or l2")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("session", help="Start a session")
    p.add_argument("--user", required=True)

    p = sub.add_parser("remember", help="Remember content with its vector")
    p.add_argument("--session", required=True)
    p.add_argument("--content", required=True)
    p.add_argument("--vector", required=True)

    p = sub.add_parser("recall", help="Recall records for a query vector")
    p.add_argument("--vector", required=True)
    p.add_argument("-k", type=int, default=5)
    p.add_argument("--session", default=None)
    p.add_argument("--ef", type=int, default=None)
    p.add_argument("--user", default=None)

    p = sub.add_parser("update", help="Replace a record's content")
    p.add_argument("--record", required=True)
    p.add_argument("--content", required=True)
    p.add_argument("--vector", default=None)

    p = sub.add_parser("forget", help="Forget a record")
    p.add_argument("--record", required=True)

    p = sub.add_parser("records", help="List a session's records")
    p.add_argument("--session", required=True)

    sub.add_parser("stats", help="Show index statistics")
    return parser


def build_settings(args: argparse.Namespace) -> Settings:
    settings = load_settings(args.config)
    index_overrides = {}
    if args.dim is not None:
        index_overrides["dimensionality"] = args.dim
    if args.metric is not None:
        index_overrides["metric"] = args.metric
    if index_overrides:
        settings.index = IndexConfig(**{**settings.index.model_dump(), **index_overrides})
    if args.db is not None:
        settings.storage = StorageConfig(backend="sqlite", db_path=args.db)
    return settings


def run(args: argparse.Namespace, service: MemoryService) -> int:
    if args.command == "session":
        session = service.start_session(args.user)
        print(session.id)
    elif args.command == "remember":
        try:
            print(service.remember(args.session, args.content, parse_vector(args.vector)))
        except PartialFailure as e:
            print(f"⚠️  {e.message}", file=sys.stderr)
            print(e.record_id)
            return 2
    elif args.command == "recall":
        hits = service.recall(parse_vector(args.vector), k=args.k, session_id=args.session, ef=args.ef,
                              user_id=args.user)
        for hit in hits:
            print(f"{hit.distance:.4f}\t{hit.record.id}\t{hit.record.snippet(80)}")
    elif args.command == "update":
        vector = parse_vector(args.vector) if args.vector is not None else None
        record = service.update_record(args.record, args.content, vector=vector)
        print(f"Updated {record.id}")
    elif args.command == "forget":
        record = service.forget(args.record)
        print(f"Forgot {record.id}")
    elif args.command == "records":
        for record in service.list_records(args.session):
            state = "pending" if record.pending else f"node={record.node_id}"
            print(f"{record.id}\t{state}\t{record.snippet(80)}")
    elif args.command == "stats":
        print(json.dumps(service.stats(), indent=2))
    return 0


def main(argv: Optional[List[str]] = None, service: Optional[MemoryService] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    log = get_logger("agent_memory.cli").bind(run_id=new_run_id(), command=args.command)

    try:
        if service is None:
            service = create_memory_service(build_settings(args))
        return run(args, service)
    except AgentMemoryError as e:
        log.info("cli_failed", error=type(e).__name__)
        print(f"❌ {e.message}", file=sys.stderr)
        return 1
    except ValueError as e:
        log.info("cli_failed", error="invalid_argument")
        print(f"❌ {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
