"""
Main entry point for the thoughtgraph command-line tool.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from thoughtgraph.config import get_settings
from thoughtgraph.pipeline.orchestrator import ResearchOrchestrator
from thoughtgraph.reasoner.base import Reasoner
from thoughtgraph.reasoner.http import HttpReasoner
from thoughtgraph.reasoner.ollama import OllamaReasoner


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="thoughtgraph",
        description="Run the nine-stage graph-of-thoughts research pipeline on a question.",
    )
    parser.add_argument("question", help="Research question to investigate")
    parser.add_argument(
        "--backend",
        choices=["ollama", "http"],
        default="ollama",
        help="Reasoner backend to use",
    )
    parser.add_argument("--model", default=None, help="Ollama model name (ollama backend)")
    parser.add_argument("--endpoint", default=None, help="Reasoning service URL (http backend)")
    parser.add_argument(
        "--through-stage",
        type=int,
        default=9,
        choices=range(1, 10),
        metavar="N",
        help="Stop after stage N (1-9)",
    )
    parser.add_argument("--output", type=Path, default=None, help="Write the graph snapshot as JSON")
    return parser


def build_reasoner(args: argparse.Namespace) -> Reasoner:
    if args.backend == "http":
        return HttpReasoner(endpoint=args.endpoint)
    return OllamaReasoner(model=args.model)


async def run_research(argv: list[str] | None = None) -> None:
    """
    Run a research question through the pipeline.

    Prints each stage narrative and optionally exports the final graph.
    """
    args = build_parser().parse_args(argv)
    logger = logging.getLogger(__name__)
    settings = get_settings()

    logger.info("Initializing thoughtgraph...")
    logger.debug(f"Backend: {args.backend}, max concurrent calls: {settings.max_concurrent_calls}")

    orchestrator = ResearchOrchestrator(reasoner=build_reasoner(args), settings=settings)
    try:
        state = await orchestrator.run(args.question, through_stage=args.through_stage)
    finally:
        await orchestrator.close()

    for result in state.results:
        print(f"\n[Stage {result.stage.value}: {result.stage.title}]\n{result.narrative}")
    if state.context.final_summary:
        print(f"\n{state.context.final_summary}")

    if args.output:
        args.output.write_text(state.graph.snapshot().model_dump_json(indent=2), encoding="utf-8")
        logger.info(f"Graph written to {args.output}")


def main() -> None:
    """Main entry point for the application."""
    setup_logging()

    try:
        asyncio.run(run_research(sys.argv[1:]))
    except KeyboardInterrupt:
        print("\nResearch run terminated by user.")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
