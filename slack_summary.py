"""
Slack meeting summary, posted with chat.postMessage as Block Kit.
"""

import logging

import requests

from meeting_models import JiraTicket, MeetingContent, MeetingExtraction

logger = logging.getLogger(__name__)

SLACK_POST_MESSAGE_URL = 'https://slack.com/api/chat.postMessage'
REQUEST_TIMEOUT_SECONDS = 30

PRIORITY_ICONS = {'High': '🔴', 'Medium': '🟡', 'Low': '🟢'}


class SlackError(RuntimeError):
    pass


def _section(text: str) -> dict:
    return {'type': 'section', 'text': {'type': 'mrkdwn', 'text': text}}


def build_blocks(meeting: MeetingContent, extraction: MeetingExtraction,
                 jira_tickets: list[JiraTicket], jira_base_url: str) -> list[dict]:
    when = meeting.created_at.astimezone().strftime('%a %b %d, %I:%M %p')
    blocks = [
        {'type': 'header', 'text': {'type': 'plain_text', 'text': f"📋 {meeting.title}", 'emoji': True}},
        {'type': 'context', 'elements': [{'type': 'mrkdwn', 'text': f"📅 {when}"}]},
        {'type': 'divider'},
        _section(f"*Summary*\n{extraction.meeting_summary}"),
    ]

    if extraction.key_decisions:
        decisions = '\n'.join(f"• {d}" for d in extraction.key_decisions)
        blocks.append(_section(f"*Key Decisions*\n{decisions}"))

    if extraction.action_items:
        lines = []
        for item in extraction.action_items:
            assignee = f" → _{item.assignee}_" if item.assignee else ''
            due = f" (due: {item.due_date})" if item.due_date else ''
            icon = PRIORITY_ICONS.get(item.priority, '🟡')
            lines.append(f"{icon} {item.description}{assignee}{due}")
        blocks.append(_section("*Action Items*\n" + '\n'.join(lines)))

    if jira_tickets:
        lines = '\n'.join(f"• <{jira_base_url}/browse/{t.key}|{t.key}>: {t.summary}" for t in jira_tickets)
        blocks.append(_section(f"*Engineering Tickets Created*\n{lines}"))

    if extraction.follow_ups:
        follow_ups = '\n'.join(f"• {f}" for f in extraction.follow_ups)
        blocks.append(_section(f"*Follow-ups*\n{follow_ups}"))

    return blocks


def post_slack_summary(config, meeting: MeetingContent, extraction: MeetingExtraction,
                       jira_tickets: list[JiraTicket]) -> str:
    """Post the summary and return the message ts."""
    fallback = (
        f"📋 {meeting.title}: {len(jira_tickets)} tickets created, "
        f"{len(extraction.action_items)} action items"
    )
    payload = {
        'channel': config.slack_channel_id,
        'text': fallback,
        'blocks': build_blocks(meeting, extraction, jira_tickets, config.jira_base_url),
        'unfurl_links': False,
    }
    try:
        resp = requests.post(
            SLACK_POST_MESSAGE_URL,
            json=payload,
            headers={'Authorization': f'Bearer {config.slack_bot_token}'},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise SlackError(f"Slack request failed: {e}") from e

    if resp.status_code != 200:
        raise SlackError(f"Slack API error ({resp.status_code}): {resp.text.strip()}")
    data = resp.json()
    if not data.get('ok'):
        raise SlackError(f"Slack API error: {data.get('error', 'unknown error')}")
    return data.get('ts') or ''
