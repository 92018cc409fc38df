"""
Shared value types for the meeting automator.

Calendar events and Granola documents are passed around by value; extraction
results mirror the JSON schema the LLM is asked to return.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


@dataclass(frozen=True)
class CalendarEvent:
    id: str
    title: str
    start: datetime
    end: datetime
    calendar_name: str = 'Unknown'


@dataclass(frozen=True)
class NotesDocument:
    """A Granola document record. Content is fetched separately."""
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    raw: dict = field(default_factory=dict, compare=False, repr=False, hash=False)


@dataclass
class MeetingContent:
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    notes_markdown: str = ''
    transcript: str = ''

    @property
    def is_ready(self) -> bool:
        return bool(self.notes_markdown.strip() or self.transcript.strip())


ActionPriority = Literal['High', 'Medium', 'Low']
IssueType = Literal['Bug', 'Story', 'Task', 'Spike']
TicketPriority = Literal['Highest', 'High', 'Medium', 'Low', 'Lowest']


# --- Pydantic models for the LLM's JSON reply (camelCase on the wire) ---

class _ExtractionModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ActionItem(_ExtractionModel):
    """A non-engineering follow-up task."""

    description: str
    assignee: str | None = None
    due_date: str | None = None
    priority: ActionPriority = 'Medium'


class EngineeringTicket(_ExtractionModel):
    """A work item to be filed in JIRA."""

    summary: str
    description: str
    issue_type: IssueType = 'Task'
    priority: TicketPriority = 'Medium'
    acceptance_criteria: list[str] | None = None
    assignee: str | None = None


class MeetingExtraction(_ExtractionModel):
    meeting_summary: str
    key_decisions: list[str] = Field(default_factory=list)
    action_items: list[ActionItem] = Field(default_factory=list)
    engineering_tickets: list[EngineeringTicket] = Field(default_factory=list)
    follow_ups: list[str] = Field(default_factory=list)


@dataclass
class JiraTicket:
    key: str
    id: str
    self_url: str
    summary: str


@dataclass
class PipelineResult:
    meeting_id: str
    meeting_title: str
    extraction: MeetingExtraction
    jira_tickets: list[JiraTicket]
    slack_message_ts: str
