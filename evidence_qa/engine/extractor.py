"""Evidence sufficiency extraction and repair.

Single Responsibility: ask the model which requirements the reranked snippets
satisfy, and turn whatever JSON comes back into a canonical SufficiencyVerdict.

``normalize_extractor_output`` is a pure ``raw -> verdict`` function. Models
regularly return maps where arrays were requested, single strings, nested
carriers, or a top-level requirement -> chunk id map; each of those shapes has
an explicit fallback branch below and sets ``had_shape_repair``.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping, Sequence

from ..common.config_loader import GATE_MODE_LEGACY, ExtractorSettings
from ..common.llm_helpers import parse_json_object
from ..common.text_normalization import normalize_whitespace
from .interfaces import CompletionService
from .prompt_templates import (
    EXTRACTOR_SYSTEM_PROMPT,
    LEGACY_GATE_SYSTEM_PROMPT,
    build_extractor_user_prompt,
    build_snippet_user_prompt,
)
from .types import ExtractedItem, Overall, ScoredChunk, SufficiencyVerdict

logger = logging.getLogger(__name__)

EXTRACTOR_INVALID_REASON = "NO_VALID_EXTRACTED_ITEMS"
LEGACY_INSUFFICIENT_REASON = "INSUFFICIENT_EVIDENCE"

# Keys (lowercased, separators removed) that are structure, never requirement names.
_REQUIREMENT_MAP_IGNORED_KEYS = frozenset({
    "requirements",
    "extracted",
    "overall",
    "supportingchunkids",
    "chunkids",
    "chunks",
})

_MAX_LEAF_DEPTH = 6
_VALUE_KEYS = ("value", "extractedValue")
_CHUNK_ID_KEYS = ("supportingChunkIds", "chunkIds", "chunks")


# ---------------------------------------------------------------------------
# Small coercions
# ---------------------------------------------------------------------------


def requirement_match_key(value: str) -> str:
    """Case, whitespace, underscore and hyphen insensitive requirement key."""
    return normalize_whitespace(re.sub(r"[_-]+", " ", value.lower()))


def _requirement_text(value: str) -> str:
    return normalize_whitespace(re.sub(r"_+", " ", value))


def _string_or_none(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _dedupe(values: Iterable[str], limit: int) -> list[str]:
    return list(dict.fromkeys(values))[:limit]


def _first_not_none(mapping: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value is not None:
            return value
    return None


def _collect_string_leaves(value: Any, output: list[str], depth: int = 0) -> None:
    if depth > _MAX_LEAF_DEPTH:
        return
    as_string = _string_or_none(value)
    if as_string:
        output.append(as_string)
    elif isinstance(value, list):
        for item in value:
            _collect_string_leaves(item, output, depth + 1)
    elif isinstance(value, dict):
        for nested in value.values():
            _collect_string_leaves(nested, output, depth + 1)


def _is_ignored_key(key: str) -> bool:
    return re.sub(r"[\s_-]+", "", key.lower()) in _REQUIREMENT_MAP_IGNORED_KEYS


def _looks_like_requirement_key(key: str) -> bool:
    normalized = requirement_match_key(key)
    if len(normalized) < 3 or normalized.isdigit():
        return False
    return not _is_ignored_key(normalized)


def _chunk_id_list(raw: Any) -> list[str]:
    if isinstance(raw, str):
        return [raw.strip()] if raw.strip() else []
    if isinstance(raw, list):
        return [item.strip() for item in raw if isinstance(item, str) and item.strip()]
    return []


class _Repair:
    """Per-call repair context: the allowed id set and list limits."""

    def __init__(self, allowed_chunk_ids: Iterable[str], limits: ExtractorSettings):
        self.allowed = {str(chunk_id) for chunk_id in allowed_chunk_ids}
        self.limits = limits

    def chunk_ids(self, raw: Any) -> list[str]:
        return _dedupe(
            (chunk_id for chunk_id in _chunk_id_list(raw) if chunk_id in self.allowed),
            self.limits.max_supporting_chunk_ids,
        )

    # -- top-level requirement -> chunk ids map ------------------------------

    def requirement_chunk_map(self, carrier: Any) -> dict[str, list[str]]:
        """``{"Requirement A": ["c1"]}`` (optionally nested one carrier deep).

        A bare list of ids is not a map and is never spread over items.
        """
        if not isinstance(carrier, dict):
            return {}
        mapping: dict[str, list[str]] = {}
        for key, value in carrier.items():
            requirement = _requirement_text(str(key))
            if not requirement:
                continue
            if isinstance(value, dict):
                nested = _first_not_none(value, _CHUNK_ID_KEYS)
                value = nested if nested is not None else value
            ids = self.chunk_ids(value)
            if ids:
                mapping[requirement_match_key(requirement)] = ids
        return mapping

    # -- requirements ---------------------------------------------------------

    def requirements(self, raw: Any, extracted: Sequence[ExtractedItem]) -> tuple[list[str], bool]:
        """Array, then single string, map values, map keys, the extracted
        items' own requirements and finally deep string leaves."""
        limit = self.limits.max_requirements
        derived = _dedupe((item.requirement for item in extracted), limit)

        if isinstance(raw, list):
            texts = (_requirement_text(v) for v in raw if isinstance(v, str))
            return _dedupe((t for t in texts if t), limit) or derived, False

        single = _string_or_none(raw)
        if single:
            return [_requirement_text(single)], True

        if isinstance(raw, dict):
            values = [_requirement_text(s) for s in map(_string_or_none, raw.values()) if s]
            values = [v for v in values if v]
            if values:
                return _dedupe(values, limit), True

            keys = [_requirement_text(str(k)) for k in raw if _looks_like_requirement_key(str(k))]
            keys = [k for k in keys if k]
            if keys:
                return _dedupe(keys, limit), True

        if derived:
            return derived, True

        if not isinstance(raw, dict):
            return [], raw is not None

        leaves: list[str] = []
        _collect_string_leaves(raw, leaves)
        texts = (_requirement_text(leaf) for leaf in leaves)
        return _dedupe((t for t in texts if t), limit), True

    # -- extracted items ----------------------------------------------------

    def item(self, requirement: str, raw_value: Any, raw_chunk_ids: Any) -> ExtractedItem | None:
        requirement = _requirement_text(requirement)
        if not requirement:
            return None
        supporting = self.chunk_ids(raw_chunk_ids)
        value = _string_or_none(raw_value)
        if value is None or not supporting:
            return ExtractedItem(requirement=requirement, value=None, supporting_chunk_ids=())
        return ExtractedItem(requirement=requirement, value=value, supporting_chunk_ids=tuple(supporting))

    def extracted(self, raw: Any, chunk_map: Mapping[str, list[str]]) -> tuple[list[ExtractedItem], bool]:
        limit = self.limits.max_extracted

        if isinstance(raw, list):
            items: list[ExtractedItem] = []
            for entry in raw:
                if not isinstance(entry, dict):
                    continue
                requirement = _string_or_none(entry.get("requirement"))
                if not requirement:
                    continue
                raw_ids = _first_not_none(entry, _CHUNK_ID_KEYS)
                if raw_ids is None:
                    raw_ids = chunk_map.get(requirement_match_key(_requirement_text(requirement)), [])
                item = self.item(requirement, _first_not_none(entry, _VALUE_KEYS), raw_ids)
                if item is not None:
                    items.append(item)
            return items[:limit], False

        if not isinstance(raw, dict):
            return [], False

        # Map shape: {"Requirement A": "value"} or {"Requirement A": {"value": ..., "chunkIds": [...]}}
        items = []
        for raw_key, raw_entry in raw.items():
            key = str(raw_key)
            if _is_ignored_key(key) or not _requirement_text(key):
                continue
            requirement = _requirement_text(key)
            raw_value: Any = raw_entry
            raw_ids: Any = []
            if isinstance(raw_entry, dict):
                requirement = _string_or_none(raw_entry.get("requirement")) or requirement
                raw_value = _first_not_none(raw_entry, _VALUE_KEYS)
                raw_ids = _first_not_none(raw_entry, _CHUNK_ID_KEYS) or []

            mapped = chunk_map.get(requirement_match_key(_requirement_text(requirement)))
            if mapped and not self.chunk_ids(raw_ids):
                raw_ids = mapped

            item = self.item(requirement, raw_value, raw_ids)
            if item is None:
                continue
            items.append(item)
            if len(items) >= limit:
                break
        return items, True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _claims_not_found(raw_overall: Any) -> bool:
    return isinstance(raw_overall, str) and raw_overall.strip().upper() == Overall.NOT_FOUND.value


def _decide_overall(
    requirements: Sequence[str],
    extracted: Sequence[ExtractedItem],
    raw_overall: Any = None,
) -> Overall:
    """Recomputed from the valid items; a raw FOUND/PARTIAL claim is ignored
    but a raw NOT_FOUND claim always wins."""
    valid = [item for item in extracted if item.is_valid]
    if not valid or _claims_not_found(raw_overall):
        return Overall.NOT_FOUND

    requirement_keys = {requirement_match_key(r) for r in requirements}
    if not requirement_keys:
        return Overall.FOUND if all(item.is_valid for item in extracted) else Overall.PARTIAL

    satisfied = {requirement_match_key(item.requirement) for item in valid}
    if requirement_keys <= satisfied:
        return Overall.FOUND
    if requirement_keys & satisfied:
        return Overall.PARTIAL
    return Overall.NOT_FOUND


def normalize_extractor_output(
    raw: Any,
    allowed_chunk_ids: Iterable[str],
    settings: ExtractorSettings | None = None,
) -> SufficiencyVerdict:
    """Repair raw extractor JSON into a canonical SufficiencyVerdict.

    Pure and idempotent: feeding the verdict (or ``verdict.to_dict()``) back in
    returns an equal verdict.
    """
    if isinstance(raw, SufficiencyVerdict):
        raw = raw.to_dict()

    repair = _Repair(allowed_chunk_ids, settings or ExtractorSettings())
    parsed: dict[str, Any] = raw if isinstance(raw, dict) else {}
    had_shape_repair = not isinstance(raw, dict) or parsed.get("hadShapeRepair") is True

    chunk_map = repair.requirement_chunk_map(_first_not_none(parsed, ("supportingChunkIds", "chunkIds")))
    had_shape_repair = had_shape_repair or bool(chunk_map)

    extracted, repaired = repair.extracted(parsed.get("extracted"), chunk_map)
    had_shape_repair = had_shape_repair or repaired

    requirements, repaired = repair.requirements(parsed.get("requirements"), extracted)
    had_shape_repair = had_shape_repair or repaired

    extractor_invalid = not any(item.is_valid for item in extracted)
    return SufficiencyVerdict(
        requirements=tuple(requirements),
        extracted=tuple(extracted),
        overall=_decide_overall(requirements, extracted, parsed.get("overall")),
        had_shape_repair=had_shape_repair or extractor_invalid,
        extractor_invalid=extractor_invalid,
        invalid_reason=EXTRACTOR_INVALID_REASON if extractor_invalid else None,
    )


def normalize_legacy_gate_output(
    raw: Any,
    allowed_chunk_ids: Iterable[str],
    question: str,
    settings: ExtractorSettings | None = None,
) -> SufficiencyVerdict:
    """Map ``{sufficient, missingPoints, supportingChunkIds}`` onto a verdict.

    Sufficient evidence becomes a single satisfied requirement (the question);
    otherwise the missing points are the unsatisfied requirements.
    """
    limits = settings or ExtractorSettings()
    repair = _Repair(allowed_chunk_ids, limits)
    parsed: dict[str, Any] = raw if isinstance(raw, dict) else {}

    supporting = repair.chunk_ids(parsed.get("supportingChunkIds"))
    missing = parsed.get("missingPoints")
    missing_points = _dedupe(
        (s for s in map(_string_or_none, missing if isinstance(missing, list) else []) if s),
        limits.max_requirements,
    )

    requirement = normalize_whitespace(question) or "question"
    if parsed.get("sufficient") is True and supporting:
        return SufficiencyVerdict(
            requirements=(requirement,),
            extracted=(ExtractedItem(requirement, "sufficient", tuple(supporting)),),
            overall=Overall.FOUND,
        )
    return SufficiencyVerdict(
        requirements=tuple(missing_points) or (requirement,),
        extracted=(),
        overall=Overall.NOT_FOUND,
        extractor_invalid=False,
        invalid_reason=LEGACY_INSUFFICIENT_REASON,
    )


def generate_evidence_sufficiency(
    completion: CompletionService,
    question: str,
    snippets: Sequence[ScoredChunk],
    settings: ExtractorSettings | None = None,
) -> SufficiencyVerdict:
    """Run the extractor (or the legacy gate) over the reranked snippets."""
    settings = settings or ExtractorSettings()
    allowed_ids = [chunk.chunk_id for chunk in snippets]

    if settings.gate_mode == GATE_MODE_LEGACY:
        content = completion.complete_json(
            LEGACY_GATE_SYSTEM_PROMPT, build_snippet_user_prompt(question, snippets)
        )
        return normalize_legacy_gate_output(parse_json_object(content), allowed_ids, question, settings)

    content = completion.complete_json(
        EXTRACTOR_SYSTEM_PROMPT, build_extractor_user_prompt(question, snippets)
    )
    verdict = normalize_extractor_output(parse_json_object(content) or None, allowed_ids, settings)
    if verdict.had_shape_repair:
        logger.warning(
            "Extractor output needed shape repair (overall=%s, invalid=%s)",
            verdict.overall.value,
            verdict.extractor_invalid,
        )
    return verdict


def select_chosen_chunks(
    reranked: Sequence[ScoredChunk],
    prioritized_ids: Sequence[str],
    limit: int = 3,
) -> list[ScoredChunk]:
    """Extractor-proposed chunks first, then the rest of the rerank order."""
    by_id = {chunk.chunk_id: chunk for chunk in reranked}
    ordered_ids = [cid for cid in prioritized_ids if cid in by_id]
    ordered_ids += [chunk.chunk_id for chunk in reranked]
    return [by_id[cid] for cid in dict.fromkeys(ordered_ids)][:limit]
