"""Tests for evidence_qa/engine/generation.py - grounded drafts and the format retry."""

import json

from conftest import FakeCompletionService, generator_payload, make_chunk
from evidence_qa.engine.generation import (
    execute_grounded_generation,
    map_citations_to_chosen,
    parse_grounded_answer,
)
from evidence_qa.engine.prompt_templates import (
    GROUNDED_ANSWER_STRICT_SYSTEM_PROMPT,
    GROUNDED_ANSWER_SYSTEM_PROMPT,
)
from evidence_qa.engine.types import Confidence

CHOSEN = [
    make_chunk("c1", "External traffic requires TLS 1.2 or higher.", doc_name="Network.pdf"),
    make_chunk("c2", "Internal services use mutual TLS.", doc_name="Network.pdf"),
]


class TestParseGroundedAnswer:
    def test_full_payload(self):
        draft = parse_grounded_answer(generator_payload("TLS 1.2 or higher.", ["c1"], confidence="med"))
        assert draft.answer == "TLS 1.2 or higher."
        assert draft.cited == (("c1", ""),)
        assert draft.confidence is Confidence.MED
        assert draft.needs_review is False

    def test_missing_fields_default_conservatively(self):
        draft = parse_grounded_answer(json.dumps({"answer": "  Yes.  "}))
        assert draft.answer == "Yes."
        assert draft.cited == ()
        assert draft.confidence is Confidence.LOW
        assert draft.needs_review is True

    def test_unknown_confidence_is_low(self):
        draft = parse_grounded_answer(json.dumps({"answer": "Yes.", "confidence": "very high"}))
        assert draft.confidence is Confidence.LOW

    def test_legacy_citation_id_list(self):
        draft = parse_grounded_answer(json.dumps({"answer": "Yes.", "citationChunkIds": ["c1", 7, "c2"]}))
        assert draft.cited == (("c1", ""), ("c2", ""))

    def test_citation_cap(self):
        payload = generator_payload("Yes.", [f"c{i}" for i in range(9)])
        assert len(parse_grounded_answer(payload, max_citations=5).cited) == 5

    def test_garbage_is_empty_answer(self):
        assert parse_grounded_answer("<html>").answer == ""


class TestMapCitationsToChosen:
    def test_drops_ids_outside_chosen_set(self):
        citations = map_citations_to_chosen([("c9", ""), ("c1", "")], CHOSEN)
        assert [c.chunk_id for c in citations] == ["c1"]
        assert citations[0].doc_name == "Network.pdf"

    def test_one_citation_per_chunk(self):
        citations = map_citations_to_chosen([("c1", ""), ("c1", "TLS 1.2")], CHOSEN)
        assert len(citations) == 1

    def test_quote_kept_only_when_it_occurs_in_chunk(self):
        [kept] = map_citations_to_chosen([("c1", "requires TLS 1.2")], CHOSEN)
        assert kept.quoted_snippet == "requires TLS 1.2"
        [replaced] = map_citations_to_chosen([("c1", "requires TLS 1.3")], CHOSEN)
        assert replaced.quoted_snippet == "External traffic requires TLS 1.2 or higher."


class TestExecuteGroundedGeneration:
    QUESTION = "What minimum TLS version is required for external traffic?"

    def test_clean_first_draft_needs_one_call(self):
        completion = FakeCompletionService([
            generator_payload("External traffic requires TLS 1.2 or higher.", ["c1"]),
        ])
        outcome = execute_grounded_generation(completion, self.QUESTION, CHOSEN)

        assert outcome.attempts == 1
        assert outcome.had_format_violation is False
        assert outcome.forced_not_found is False
        assert outcome.draft.answer == "External traffic requires TLS 1.2 or higher."
        assert [c.chunk_id for c in outcome.citations] == ["c1"]
        assert completion.calls[0][0] == GROUNDED_ANSWER_SYSTEM_PROMPT

    def test_generator_sees_only_chosen_chunks(self):
        completion = FakeCompletionService([generator_payload("Yes.", ["c1"])])
        execute_grounded_generation(completion, self.QUESTION, CHOSEN[:1])
        user_prompt = completion.calls[0][1]
        assert "chunkId: c1" in user_prompt
        assert "chunkId: c2" not in user_prompt

    def test_violation_then_clean_retry(self):
        completion = FakeCompletionService([
            generator_payload("- TLS 1.2\n- or higher", ["c1"]),
            generator_payload("External traffic requires TLS 1.2 or higher.", ["c1"]),
        ])
        outcome = execute_grounded_generation(completion, self.QUESTION, CHOSEN)

        assert outcome.attempts == 2
        assert outcome.had_format_violation is True
        assert outcome.forced_not_found is False
        assert outcome.draft.answer == "External traffic requires TLS 1.2 or higher."
        assert completion.calls[1][0] == GROUNDED_ANSWER_STRICT_SYSTEM_PROMPT

    def test_two_violations_force_not_found(self):
        completion = FakeCompletionService([
            generator_payload(", and more", ["c1"]),
            generator_payload(", and more", ["c1"]),
        ])
        outcome = execute_grounded_generation(completion, self.QUESTION, CHOSEN)

        assert outcome.attempts == 2
        assert outcome.forced_not_found is True
        assert outcome.draft is None
        assert outcome.citations == []
        assert outcome.debug["second_attempt_violation"] is True

    def test_sentinel_draft_is_not_a_violation(self):
        completion = FakeCompletionService([
            generator_payload("Not found in provided documents.", []),
        ])
        outcome = execute_grounded_generation(completion, self.QUESTION, CHOSEN)
        assert outcome.attempts == 1
        assert outcome.citations == []
