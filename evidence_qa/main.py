import argparse
import json
import logging
import sys

from .common.citations import format_citations_compact
from .common.config_loader import load_settings
from .engine.types import EvidenceEngineError
from .services.ask import answer_with_reuse, build_engine, build_reuse_matcher


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Answer security questionnaire questions from evidence")
    parser.add_argument("--org", required=True, help="Organization id whose evidence is searched")
    parser.add_argument(
        "--question",
        action="append",
        default=[],
        help="Question text (repeat for several questions; stdin lines are used when omitted)",
    )
    parser.add_argument("--no-reuse", action="store_true", help="Skip approved-answer reuse")
    parser.add_argument("--debug", action="store_true", help="Attach the retrieval/decision trace")
    parser.add_argument("--json", action="store_true", help="Print one JSON object per answer")
    parser.add_argument("--log-level", default="WARNING", help="Python logging level")
    return parser.parse_args(argv)


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")

    questions = [q for q in args.question if q.strip()]
    if not questions:
        questions = [line.strip() for line in sys.stdin if line.strip()]
    if not questions:
        print("No questions given.", file=sys.stderr)
        return 2

    settings = load_settings()
    try:
        engine = build_engine(settings)
        matcher = None if args.no_reuse else build_reuse_matcher(args.org, settings)
        for question in questions:
            answer = answer_with_reuse(
                org_id=args.org,
                question_text=question,
                engine=engine,
                matcher=matcher,
                debug=args.debug,
            )
            if args.json:
                print(json.dumps({"question": question, **answer.to_dict()}, ensure_ascii=False))
                continue
            print(f"Q: {question}")
            print(f"A: {answer.answer}")
            print(f"   confidence={answer.confidence.value} needs_review={answer.needs_review}")
            if answer.reused_match_type is not None:
                print(f"   reused {answer.reused_from_approved_answer_id} ({answer.reused_match_type.value})")
            if answer.citations:
                print(f"   {format_citations_compact(answer.citations)}")
            print()
    except EvidenceEngineError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(run())
