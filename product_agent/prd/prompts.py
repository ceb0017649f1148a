"""
Prompt builders for PRD analyzers and section writers.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional


def _block(title: str, body: str) -> str:
    return f"## {title}\n{body}".rstrip()


def user_request_block(message: str) -> str:
    return _block("User Request", (message or "").strip())


def analysis_summary_block(analysis: Optional[Dict[str, Any]], include_constraints: bool = False) -> str:
    """Summarize the shared context analysis so every section sees the same facts."""
    analysis = analysis or {}
    requirements = analysis.get("requirements") or {}
    lines = [
        f"- Themes: {', '.join(analysis.get('themes') or []) or 'none identified'}",
        f"- Functional requirements: {'; '.join(requirements.get('functional') or []) or 'none identified'}",
        f"- Technical requirements: {'; '.join(requirements.get('technical') or []) or 'none identified'}",
        f"- User experience: {'; '.join(requirements.get('user_experience') or []) or 'none identified'}",
        f"- MVP features: {'; '.join(requirements.get('mvp_features') or []) or 'none identified'}",
    ]
    if include_constraints:
        lines.append(f"- Constraints: {'; '.join(analysis.get('constraints') or []) or 'none identified'}")
    return _block("Context Analysis", "\n".join(lines))


def existing_items_block(title: str, items: Iterable[Any]) -> str:
    rendered = []
    for item in items or []:
        rendered.append(f"- {item if isinstance(item, str) else json.dumps(item, default=str)}")
    if not rendered:
        return ""
    return _block(title, "\n".join(rendered))


def structured_output_block(fields: List[str]) -> str:
    return _block("Output Structure", "\n".join(f"- {f}" for f in fields))


RETURN_JSON_ONLY = "Return ONLY valid JSON matching the structure above. No markdown, no commentary."


def _join(*parts: str) -> str:
    return "\n\n".join(p for p in parts if p)


def clarification_prompt(message: str) -> str:
    return _join(
        f'Evaluate whether this product request carries enough information to write a PRD: "{(message or "").strip()}"',
        _block(
            "Decision Rules",
            "- Proceed when a meaningful PRD can be written with reasonable assumptions for this product type.\n"
            "- Ask only about fundamental gaps: no core concept, no identifiable users, or no described functionality.\n"
            "- Never ask about details that can be refined in later iterations (exact metrics, technical specs).\n"
            "- Rate your confidence (0-100) that a valuable PRD can be produced; 80 or more means proceed.",
        ),
        structured_output_block([
            "needsClarification: boolean",
            "confidence: number between 0 and 100",
            "missingCritical: array of critical gaps",
            "questions: array of at most 3 critical questions",
        ]),
        RETURN_JSON_ONLY,
    )


def context_analysis_prompt(message: str, existing_prd: Optional[Dict[str, Any]] = None,
                            context_payload: Optional[Dict[str, Any]] = None) -> str:
    parts = [
        "You are a senior product analyst. Extract the themes, requirements and constraints of the request below.",
        user_request_block(message),
    ]
    if existing_prd:
        parts.append(_block("Existing PRD", json.dumps(existing_prd, default=str)[:4000]))
    if context_payload:
        parts.append(_block("Additional Context", json.dumps(context_payload, default=str)[:4000]))
    parts.extend([
        structured_output_block([
            "themes: array of strings",
            "requirements: { functional: string[], technical: string[], userExperience: string[], "
            "epics: [{ title, description }], mvpFeatures: string[] }",
            "constraints: array of strings",
        ]),
        RETURN_JSON_ONLY,
    ])
    return _join(*parts)


SECTION_DESCRIPTIONS = {
    "targetUsers": "Who the product is for",
    "solution": "What we are building and how",
    "keyFeatures": "Core functionality and differentiators",
    "successMetrics": "How success is measured",
    "constraints": "Technical, business, or regulatory limits",
}


def section_detection_prompt(message: str, existing_sections: Optional[Dict[str, Any]] = None) -> str:
    parts = [
        "You review an edit request and decide which PRD sections require updates.",
        _block("Available Sections", "\n".join(f"- {k}: {v}" for k, v in SECTION_DESCRIPTIONS.items())),
        user_request_block(message or "No instruction provided."),
    ]
    if existing_sections:
        parts.append(_block("Existing PRD Sections", json.dumps(existing_sections, default=str)[:4000]))
    parts.extend([
        _block(
            "Decision Rules",
            "- Select only the sections that must change to satisfy the request.\n"
            "- New or modified features -> keyFeatures; audience changes -> targetUsers; "
            "core approach changes -> solution; KPI updates -> successMetrics; "
            "limitations or compliance needs -> constraints.\n"
            "- Be conservative: if unsure whether a section changes, leave it out.",
        ),
        structured_output_block([
            "affectedSections: array of section keys from the list above",
            "reasoning: object mapping each affected section to a short reason",
            'confidence: "high" | "medium" | "low"',
        ]),
        RETURN_JSON_ONLY,
    ])
    return _join(*parts)


def _section_prompt(intro: str, message: str, analysis: Optional[Dict[str, Any]], existing_block: str,
                    instructions: List[str], fields: List[str], include_constraints: bool = False) -> str:
    return _join(
        intro,
        user_request_block(message),
        analysis_summary_block(analysis, include_constraints=include_constraints),
        existing_block,
        _block("Instructions", "\n".join(f"- {i}" for i in instructions)),
        structured_output_block(fields),
        RETURN_JSON_ONLY,
    )


def target_users_prompt(message: str, analysis: Optional[Dict[str, Any]], existing_users: List[str]) -> str:
    return _section_prompt(
        "You are a product manager updating the Target Users section of a PRD. Keep strong personas and edit only what the request requires.",
        message,
        analysis,
        existing_items_block("Current Personas to Respect", existing_users),
        [
            "Produce 2-4 personas, each 1-2 sentences naming who they are and their primary need.",
            "Prefer concrete segments (role, company size, pain point) over generic labels such as 'end users'.",
            "Reference an existing persona verbatim when updating or removing it.",
        ],
        [
            'mode: "smart_merge" | "append" | "replace"',
            "operations: array of { action, referenceUser?, user?, rationale? }",
            "proposedUsers: array of fully written personas to add",
            "summary: optional string explaining key decisions",
        ],
        include_constraints=True,
    )


def solution_prompt(message: str, analysis: Optional[Dict[str, Any]], existing: Optional[Dict[str, Any]]) -> str:
    existing_block = ""
    if existing:
        existing_block = _block("Current Solution", json.dumps(existing, default=str))
    return _section_prompt(
        "You are a product manager writing the Solution section of a PRD.",
        message,
        analysis,
        existing_block,
        [
            "solutionOverview: 2-4 sentences describing what will be built and why it solves the problem.",
            "approach: the delivery approach (platforms, phasing, key technical choices).",
            "Avoid placeholders such as TBD.",
        ],
        ["solutionOverview: string", "approach: string"],
    )


def key_features_prompt(message: str, analysis: Optional[Dict[str, Any]], existing_features: List[str]) -> str:
    return _section_prompt(
        "You are a product manager updating the Key Features section of a PRD.",
        message,
        analysis,
        existing_items_block("Current Features to Respect", existing_features),
        [
            "Keep 3-8 features, each a specific capability described in one sentence.",
            "Align features with the MVP features of the context analysis.",
            "Reference an existing feature verbatim when updating or removing it.",
        ],
        [
            'mode: "smart_merge" | "append" | "replace"',
            "operations: array of { action, referenceFeature?, feature?, rationale? }",
            "proposedFeatures: array of features to add",
            "summary: optional string",
        ],
    )


def success_metrics_prompt(message: str, analysis: Optional[Dict[str, Any]], existing_metrics: List[Dict[str, Any]]) -> str:
    return _section_prompt(
        "You are a product manager updating the Success Metrics section of a PRD.",
        message,
        analysis,
        existing_items_block("Current Metrics to Respect", existing_metrics),
        [
            "Keep 2-6 metrics. Every target must be measurable (include a number) and every timeline concrete.",
            "Reference an existing metric by its name when updating or removing it.",
        ],
        [
            'mode: "smart_merge" | "append" | "replace"',
            "operations: array of { action, referenceMetric?, metric?: { metric, target, timeline }, rationale? }",
            "proposedMetrics: array of { metric, target, timeline }",
            "summary: optional string",
        ],
    )


def constraints_prompt(message: str, analysis: Optional[Dict[str, Any]], existing_constraints: List[str],
                       existing_assumptions: List[str]) -> str:
    existing_block = _join(
        existing_items_block("Current Constraints", existing_constraints),
        existing_items_block("Current Assumptions", existing_assumptions),
    )
    return _section_prompt(
        "You are a product manager updating the Constraints section of a PRD.",
        message,
        analysis,
        existing_block,
        [
            "Keep 1-8 constraints (technical, business, regulatory) and 1-6 assumptions.",
            "Each entry must be a full sentence of at least 15 characters.",
        ],
        [
            'mode: "smart_merge" | "append" | "replace"',
            "constraints: { operations: [{ action, reference?, value?, rationale? }], proposed: string[] }",
            "assumptions: { operations: [{ action, reference?, value?, rationale? }], proposed: string[] }",
            "summary: optional string",
        ],
        include_constraints=True,
    )
