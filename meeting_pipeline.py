"""
Processing pipeline: extract -> create JIRA tickets -> post Slack summary.
"""

import logging

from jira_tickets import create_jira_tickets
from meeting_extract import extract_meeting_data
from meeting_models import MeetingContent, PipelineResult
from slack_summary import post_slack_summary

logger = logging.getLogger(__name__)


def process_meeting(config, meeting: MeetingContent) -> PipelineResult:
    """Run the full pipeline for one meeting. Raises on extraction or Slack failure."""
    logger.info(f"Processing \"{meeting.title}\" ({meeting.id})")

    extraction = extract_meeting_data(config.anthropic_api_key, meeting, model=config.anthropic_model)
    logger.info(
        f"Found {len(extraction.action_items)} action items, "
        f"{len(extraction.engineering_tickets)} engineering tickets, "
        f"{len(extraction.key_decisions)} decisions"
    )

    jira_tickets = []
    if extraction.engineering_tickets:
        jira_tickets = create_jira_tickets(config, extraction.engineering_tickets)
    else:
        logger.info("No engineering tickets to create")

    slack_ts = post_slack_summary(config, meeting, extraction, jira_tickets)
    logger.info(f"Posted to Slack (ts: {slack_ts})")
    logger.info(f"Done processing \"{meeting.title}\"")

    return PipelineResult(
        meeting_id=meeting.id,
        meeting_title=meeting.title,
        extraction=extraction,
        jira_tickets=jira_tickets,
        slack_message_ts=slack_ts,
    )
