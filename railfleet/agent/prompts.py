from __future__ import annotations

from typing import Any, Sequence

from railfleet.providers.search.base import SearchHit


ASSISTANT_NAME = "RailFleet AI Assistant"


def role_label(groups: Sequence[str], *, supervisor_group_id: str, technician_group_id: str) -> str:
    # Highest matching group wins; unknown groups read as viewers.
    if supervisor_group_id in groups:
        return "Supervisor"
    if technician_group_id in groups:
        return "Technician"
    return "Viewer"


def build_context(hits: Sequence[SearchHit]) -> str:
    if not hits:
        return ""
    lines = ["Relevant information from documentation:", ""]
    for idx, hit in enumerate(hits, start=1):
        lines.append(f"[{idx}] {hit.content}")
        lines.append("")
    return "\n".join(lines).rstrip()


def build_messages(
    *,
    user_name: str,
    user_email: str,
    role: str,
    hits: Sequence[SearchHit],
    history: Sequence[dict[str, Any]],
    user_message: str,
) -> list[dict[str, str]]:
    context = build_context(hits)
    system_prompt = (
        f"You are {ASSISTANT_NAME}, helping with train HVAC systems troubleshooting.\n"
        f"User: {user_name} ({user_email})\n"
        f"Role: {role}\n\n"
    )
    if context:
        system_prompt += f"Use this documentation to answer:\n{context}\n\n"
    else:
        system_prompt += "No specific documentation found.\n\n"
    system_prompt += (
        "Provide accurate, technical responses about train HVAC systems, maintenance, and troubleshooting."
    )

    messages = [{"role": "system", "content": system_prompt}]
    messages.extend({"role": msg["role"], "content": msg["content"]} for msg in history)
    messages.append({"role": "user", "content": user_message})
    return messages
