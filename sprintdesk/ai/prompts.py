"""Prompt templates for the workshop collaborator."""

import json

WORKSHOP_SYSTEM_PROMPT = """You are a senior facilitator at a product design studio.
You plan kickoff workshops that prepare a client and the studio team to execute a
fixed-scope sprint. Respond with a single JSON object and nothing else."""

WORKSHOP_USER_PROMPT = """Design a kickoff workshop for the sprint described below.

Return JSON with this shape:
{
  "title": string,
  "duration_minutes": integer,
  "objectives": [string],
  "agenda": [{"time": string, "activity": string, "description": string, "outputs": [string]}],
  "exercises": [{"name": string, "purpose": string, "deliverables_served": [string]}],
  "client_prep": [string],
  "expected_outcomes": [string]
}

The workshop must:
1. Align with the specific deliverables in this sprint
2. Address the client's goals from the sprint narrative
3. Use 1-2 proven exercises appropriate for the deliverable categories
4. Give the client a clear prep checklist
5. Produce outputs that feed directly into sprint execution

SPRINT CONTEXT:
"""


def build_sprint_context(sprint) -> dict:
    """Summarise a sprint for the prompt. Only snapshotted values are used."""
    return {
        "sprintTitle": sprint.title or "Untitled Sprint",
        "packageName": sprint.package_name,
        "weeks": sprint.weeks,
        "narrative": sprint.draft,
        "deliverables": [
            {
                "name": d.name,
                "category": d.category,
                "scope": d.scope,
                "complexity": d.complexity_score,
                "points": d.adjusted_points,
            }
            for d in sprint.deliverables
        ],
    }


def build_workshop_messages(context: dict) -> list[dict]:
    return [
        {"role": "system", "content": WORKSHOP_SYSTEM_PROMPT},
        {"role": "user", "content": WORKSHOP_USER_PROMPT + json.dumps(context, indent=2, default=str)},
    ]
