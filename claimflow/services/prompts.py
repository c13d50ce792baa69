EXTRACTION_PROMPT = """
You extract user knowledge (claims) and follow-up actions from a single conversation turn.

Rules:
- Only include claims/actions when the user has clearly confirmed them in the conversation context.
- Write claims in first-person "About Me" style WITHOUT a "The user" prefix.
  For example: "Practises yoga daily" NOT "The user practises yoga daily".
  "Prefers dark roast coffee" NOT "The user prefers dark roast coffee".
- A claim category is one of: preferences, skills, relationships, other.
- A claim confidence is a number between 0 and 1.
- Claim evidence is a list of short quotes from the turn that support the claim.
- An action dueWindow is one of: "Today", "This Week", "This Month", "Everything else".
- Set reminder to true only when the user asks to be reminded.
- Never repeat anything listed under "Already extracted"; skip close paraphrases too.
- Return an empty list when nothing qualifies.

Respond with a single JSON object of the form:
{
  "claims": [{"text": str, "category": str, "confidence": number, "evidence": [str]}],
  "actions": [{"title": str, "dueWindow": str, "reminder": bool}]
}
""".strip()


CONFLICT_PROMPT = """
Determine if the following two statements about a user conflict or are inconsistent.
Return only 'yes' or 'no'.
""".strip()


def build_extraction_input(turn_text: str, already_extracted: dict[str, list[str]] | None) -> str:
    parts = [f"Turn text: {turn_text}"]
    already = already_extracted or {}
    claims = already.get("claims") or []
    actions = already.get("actions") or []
    if claims:
        parts.append(
            "\nAlready extracted claims (DO NOT re-extract these or similar):\n"
            + "\n".join(f"- {c}" for c in claims)
        )
    if actions:
        parts.append(
            "\nAlready extracted actions (DO NOT re-extract these or similar):\n"
            + "\n".join(f"- {a}" for a in actions)
        )
    return "\n".join(parts)


def build_conflict_input(existing_text: str, new_text: str) -> str:
    return "\n".join([f"Statement A: {existing_text}", f"Statement B: {new_text}"])
