"""Command-line entry point: analyze a SQL file and print the result as JSON."""

import argparse
import json
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from query_advisor.config.startup_config import StartupConfig
from query_advisor.core.agent.analysis_service import AnalysisRequest, CallerContext, build_analysis_service
from query_advisor.core.errors import AdvisorError

logger = logging.getLogger(__name__)

LOCAL_CALLER = CallerContext(authenticated=True, user_id="local", client_address="127.0.0.1")


def _read_text(path: Optional[str]) -> Optional[str]:
    if path is None:
        return None
    if path == "-":
        return sys.stdin.read()
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="query-advisor",
        description="Detect SQL performance anti-patterns and suggest rewrites",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Free heuristic analysis
  query-advisor slow_query.sql

  # AI-assisted analysis with schema and EXPLAIN output (needs OPENAI_API_KEY)
  query-advisor slow_query.sql --advisor --db postgresql --schema schema.sql --plan explain.txt
"""
    )

    parser.add_argument("file", help="SQL file to analyze ('-' reads stdin)")
    parser.add_argument("--db", help="Database engine, required with --advisor")
    parser.add_argument("--schema", help="File with table definitions")
    parser.add_argument("--plan", help="File with the EXPLAIN output")
    parser.add_argument("--advisor", action="store_true", help="Use the AI-assisted analysis path")
    parser.add_argument("--config", help="Path to config.json")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        request = AnalysisRequest(
            query=_read_text(args.file),
            db=args.db,
            schema=_read_text(args.schema),
            execution_plan=_read_text(args.plan),
        )
    except OSError as e:
        parser.error(str(e))

    try:
        config = StartupConfig(args.config)
        config.configure_logging()
        service = build_analysis_service(config)

        if args.advisor:
            output = service.advisor_analysis(request, LOCAL_CALLER).to_dict()
        else:
            output = service.free_analysis(request, LOCAL_CALLER).to_dict()
    except AdvisorError as e:
        logger.error(f"Analysis failed ({e.kind}): {e}")
        print(f"error: {e.message}", file=sys.stderr)
        return 1

    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
