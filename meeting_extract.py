"""
Meeting extraction with Claude.

Turns Granola notes and transcript into a summary, decisions, action items and
engineering tickets.
"""

import logging
import re

from anthropic import Anthropic
from pydantic import ValidationError

from meeting_models import MeetingContent, MeetingExtraction

logger = logging.getLogger(__name__)

DEFAULT_MODEL = 'claude-sonnet-4-20250514'
MAX_TOKENS = 4096
REQUEST_TIMEOUT_SECONDS = 120

EXTRACTION_PROMPT = """You are a meeting analyst for an engineering team. Given meeting notes and transcript, extract structured data.

Rules:
- Engineering tickets should be concrete, well-scoped work items (not vague "look into X")
- Action items are non-engineering tasks: follow-ups, emails to send, meetings to schedule, decisions to communicate
- Infer priority from urgency cues in the conversation (blockers = High, nice-to-haves = Low)
- If someone is clearly assigned something, include their name as assignee
- Acceptance criteria should be testable statements
- If no engineering tickets or action items are present, return empty arrays. Do not invent work.

Respond ONLY with a JSON object matching this schema (no markdown, no backticks):
{
  "meetingSummary": "2-3 sentence summary of the meeting",
  "keyDecisions": ["decisions that were made"],
  "actionItems": [
    {"description": "what needs to be done", "assignee": "name or null",
     "dueDate": "deadline or null", "priority": "High | Medium | Low"}
  ],
  "engineeringTickets": [
    {"summary": "concise ticket title", "description": "detailed description with context",
     "issueType": "Bug | Story | Task | Spike", "priority": "Highest | High | Medium | Low | Lowest",
     "acceptanceCriteria": ["testable criteria"], "assignee": "name or null"}
  ],
  "followUps": ["items to revisit or discuss later"]
}"""


class ExtractionError(RuntimeError):
    pass


def build_meeting_context(meeting: MeetingContent) -> str:
    parts = [
        f"Meeting: {meeting.title}",
        f"Date: {meeting.created_at.isoformat()}",
        "---",
    ]
    if meeting.notes_markdown:
        parts.append(f"## Enhanced Notes\n{meeting.notes_markdown}")
    if meeting.transcript:
        parts.append(f"## Transcript\n{meeting.transcript}")
    return '\n\n'.join(parts)


def parse_extraction(text: str) -> MeetingExtraction:
    """Validate the model's JSON reply, tolerating code fences and stray prose."""
    cleaned = re.sub(r'```(?:json)?', '', text).strip()
    start = cleaned.find('{')
    end = cleaned.rfind('}') + 1
    if start == -1 or end <= start:
        raise ExtractionError("No JSON object in extraction response")
    try:
        return MeetingExtraction.model_validate_json(cleaned[start:end])
    except ValidationError as e:
        raise ExtractionError(f"Invalid extraction response: {e}") from e


def extract_meeting_data(api_key: str, meeting: MeetingContent, model: str = DEFAULT_MODEL,
                         client: Anthropic | None = None) -> MeetingExtraction:
    client = client or Anthropic(api_key=api_key, timeout=REQUEST_TIMEOUT_SECONDS)
    prompt = (
        f"{EXTRACTION_PROMPT}\n\n---\n\n"
        f"Here are the meeting notes to analyze:\n\n{build_meeting_context(meeting)}"
    )
    response = client.messages.create(
        model=model,
        max_tokens=MAX_TOKENS,
        messages=[{'role': 'user', 'content': prompt}],
    )
    text = ''.join(block.text for block in response.content if block.type == 'text')
    logger.debug(f"Extraction response for {meeting.id}: {len(text)} chars")
    return parse_extraction(text)
