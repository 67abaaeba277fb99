import io
import json

import pytest

from evidence_qa import main
from evidence_qa.engine.types import Citation, Confidence, EvidenceAnswer, MatchType, UpstreamServiceError


@pytest.fixture
def wiring(monkeypatch):
    calls = {"questions": [], "matcher_built": False}

    def fake_build_engine(settings):
        return "engine"

    def fake_build_matcher(org_id, settings):
        calls["matcher_built"] = True
        return "matcher"

    def fake_answer_with_reuse(*, org_id, question_text, engine, matcher, debug):
        calls["questions"].append((org_id, question_text, matcher, debug))
        if question_text.startswith("Reuse"):
            return EvidenceAnswer(
                answer="Yes.",
                citations=[Citation("c1", "Policy.pdf", "Yes it is.")],
                confidence=Confidence.MED,
                needs_review=False,
                reused_from_approved_answer_id="a1",
                reused_match_type=MatchType.EXACT,
            )
        return EvidenceAnswer(
            answer="External traffic requires TLS 1.2 or higher.",
            citations=[Citation("c1", "Network.pdf", "External traffic requires TLS 1.2 or higher.")],
            confidence=Confidence.HIGH,
            needs_review=False,
        )

    monkeypatch.setattr(main, "load_settings", lambda: object())
    monkeypatch.setattr(main, "build_engine", fake_build_engine)
    monkeypatch.setattr(main, "build_reuse_matcher", fake_build_matcher)
    monkeypatch.setattr(main, "answer_with_reuse", fake_answer_with_reuse)
    return calls


def test_parse_args_defaults():
    args = main.parse_args(["--org", "org-1", "--question", "Q?"])
    assert args.org == "org-1"
    assert args.question == ["Q?"]
    assert args.debug is False
    assert args.no_reuse is False
    assert args.json is False


def test_run_prints_answer_and_citations(wiring, capsys):
    assert main.run(["--org", "org-1", "--question", "What TLS version?"]) == 0
    out = capsys.readouterr().out
    assert "A: External traffic requires TLS 1.2 or higher." in out
    assert 'Network.pdf#c1:"External traffic requires TLS 1.2 or higher."' in out
    assert wiring["questions"] == [("org-1", "What TLS version?", "matcher", False)]


def test_run_json_output(wiring, capsys):
    assert main.run(["--org", "org-1", "--question", "Reuse me?", "--json"]) == 0
    payload = json.loads(capsys.readouterr().out.strip())
    assert payload["question"] == "Reuse me?"
    assert payload["reused_from_approved_answer_id"] == "a1"
    assert payload["reused_match_type"] == "exact"
    assert payload["confidence"] == "med"


def test_no_reuse_skips_matcher(wiring):
    main.run(["--org", "org-1", "--question", "Q?", "--no-reuse", "--debug"])
    assert wiring["matcher_built"] is False
    assert wiring["questions"] == [("org-1", "Q?", None, True)]


def test_questions_read_from_stdin(wiring, monkeypatch):
    monkeypatch.setattr("sys.stdin", io.StringIO("First question?\n\nSecond question?\n"))
    assert main.run(["--org", "org-1"]) == 0
    assert [q[1] for q in wiring["questions"]] == ["First question?", "Second question?"]


def test_no_questions_is_usage_error(wiring, monkeypatch):
    monkeypatch.setattr("sys.stdin", io.StringIO(""))
    assert main.run(["--org", "org-1"]) == 2


def test_upstream_failure_exits_non_zero(wiring, monkeypatch, capsys):
    def failing(**kwargs):
        raise UpstreamServiceError("OpenAI embedding request failed.")

    monkeypatch.setattr(main, "answer_with_reuse", failing)
    assert main.run(["--org", "org-1", "--question", "Q?"]) == 1
    assert "OpenAI embedding request failed." in capsys.readouterr().err
