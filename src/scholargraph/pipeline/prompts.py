from __future__ import annotations

from typing import Sequence

from scholargraph.db.enums import EXTRACTABLE_NODE_KINDS

TRUNCATION_MARKER = "\n\n[Text truncated...]"

ENTITY_INSTRUCTIONS = (
    "You are an expert academic research analyst. Extract structured entities from a research paper.\n"
    "Entity types:\n"
    "- concept: high-level ideas, theories or paradigms\n"
    "- method: specific algorithms or approaches\n"
    "- technique: implementation strategies or technical tricks\n"
    "- dataset: benchmark datasets or data sources\n"
    "- metric: evaluation measures\n"
    "- challenge: problems or limitations being addressed\n"
    "- application: use cases or domains\n"
    "- result: quantitative outcomes or achievements\n"
    "- author: people credited with the work\n"
    "Rules:\n"
    "- Extract entities central to the paper's contribution, using the paper's terminology.\n"
    "- Give a brief description of each entity's role and a supporting quote or paraphrase as context.\n"
    "- Assign confidence between 0.0 and 1.0.\n"
    "- Avoid generic terms such as \"algorithm\" or \"method\" without specifics.\n"
    "Return ONLY valid JSON."
)

RELATIONSHIP_INSTRUCTIONS = (
    "You are an expert at identifying semantic relationships in academic research.\n"
    "Relationship types:\n"
    "- paper to paper: cites, improves_on, extends, compares_with, builds_upon, contradicts\n"
    "- paper to concept: introduces, applies, evaluates, addresses\n"
    "- concept to concept: related_to, enables, requires, alternative_to, generalizes, specializes\n"
    "- method to method: outperforms, combines_with, replaces\n"
    "- other: authored_by, uses_dataset, measures_with, solves, inspired_by\n"
    "Rules:\n"
    "- Only extract relationships stated or clearly supported by the text, with evidence.\n"
    "- source and target must be an extracted entity name, the paper title, or a known paper title.\n"
    "- Assign confidence based on the strength of the evidence.\n"
    "Return ONLY valid JSON, no markdown."
)


def truncate_body(text: str | None, max_chars: int) -> str:
    if not text:
        return ""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_MARKER


def render_entity_prompt(*, title: str, abstract: str | None, body: str) -> str:
    kinds = "|".join(k.value for k in EXTRACTABLE_NODE_KINDS)
    return (
        "Extract entities from this paper.\n\n"
        f"PAPER TITLE: {title}\n\n"
        f"PAPER ABSTRACT:\n{abstract or 'Not available'}\n\n"
        f"PAPER TEXT:\n{body or 'Not available'}\n\n"
        "Return a JSON object of the form:\n"
        '{"entities":[{"name":"Entity Name","type":"' + kinds + '",'
        '"description":"Role of the entity in the paper","confidence":0.9,'
        '"context":"Supporting quote or paraphrase","metadata":{"section":"Methods"}}]}\n'
        "Focus on the 10-30 most important entities. Prefer quality over quantity."
    )


def render_relationship_prompt(
    *,
    title: str,
    entities: Sequence[tuple[str, str]],
    known_papers: Sequence[str],
    body: str,
) -> str:
    entity_list = "\n".join(f"- {name} ({kind})" for name, kind in entities) or "- none"
    known = ""
    if known_papers:
        known = "\n\nKNOWN PAPERS IN KNOWLEDGE GRAPH:\n" + "\n".join(f"- {t}" for t in known_papers)
    return (
        "Extract semantic relationships from this paper.\n\n"
        f"PAPER: {title}\n\n"
        f"EXTRACTED ENTITIES:\n{entity_list}"
        f"{known}\n\n"
        f"PAPER TEXT:\n{body or 'Not available'}\n\n"
        "Return a JSON object of the form:\n"
        '{"relationships":[{"source":"Entity or Paper Name","target":"Entity or Paper Name",'
        '"type":"improves_on|extends|introduces|applies|related_to|outperforms|...",'
        '"description":"Brief description of the relationship",'
        '"evidence":"Direct quote or paraphrase supporting it","confidence":0.9,'
        '"metadata":{"section":"Results"}}]}\n'
        "Focus on 15-40 high-quality relationships, prioritising paper-to-paper comparisons, "
        "newly introduced concepts and performance comparisons with evidence."
    )
