"""
JIRA ticket creation through the REST API v3.
"""

import logging

import requests

from meeting_models import EngineeringTicket, JiraTicket

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30
POD_FIELD = 'customfield_10089'


class JiraError(RuntimeError):
    pass


def format_description(ticket: EngineeringTicket) -> dict:
    """Atlassian Document Format body: description plus acceptance criteria."""
    content = [{
        'type': 'paragraph',
        'content': [{'type': 'text', 'text': ticket.description or ticket.summary}],
    }]
    if ticket.acceptance_criteria:
        content.append({
            'type': 'heading',
            'attrs': {'level': 3},
            'content': [{'type': 'text', 'text': 'Acceptance Criteria'}],
        })
        content.append({
            'type': 'bulletList',
            'content': [
                {'type': 'listItem', 'content': [
                    {'type': 'paragraph', 'content': [{'type': 'text', 'text': ac}]},
                ]}
                for ac in ticket.acceptance_criteria
            ],
        })
    return {'type': 'doc', 'version': 1, 'content': content}


def build_issue_payload(config, ticket: EngineeringTicket) -> dict:
    # JIRA has no Spike issue type here; file it as a labelled Task
    is_spike = ticket.issue_type == 'Spike'
    fields = {
        'project': {'key': config.jira_project_key},
        'summary': ticket.summary,
        'description': format_description(ticket),
        'issuetype': {'name': 'Task' if is_spike else ticket.issue_type},
        POD_FIELD: [{'value': config.jira_pod}],
        'priority': {'name': ticket.priority},
    }
    if is_spike:
        fields['labels'] = ['spike']
    return {'fields': fields}


def create_jira_ticket(config, ticket: EngineeringTicket) -> JiraTicket:
    url = f"{config.jira_base_url}/rest/api/3/issue"
    try:
        resp = requests.post(
            url,
            json=build_issue_payload(config, ticket),
            auth=(config.jira_email, config.jira_api_token),
            headers={'Accept': 'application/json'},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise JiraError(f"JIRA request failed: {e}") from e

    if resp.status_code not in (200, 201):
        raise JiraError(f"JIRA API error ({resp.status_code}): {resp.text.strip()}")

    data = resp.json()
    return JiraTicket(key=data['key'], id=data['id'], self_url=data.get('self', ''), summary=ticket.summary)


def create_jira_tickets(config, tickets: list[EngineeringTicket]) -> list[JiraTicket]:
    """Create each ticket; one failure does not stop the rest."""
    results = []
    for ticket in tickets:
        try:
            result = create_jira_ticket(config, ticket)
        except JiraError as e:
            logger.error(f"Failed to create ticket \"{ticket.summary}\": {e}")
            continue
        logger.info(f"Created {result.key}: {result.summary}")
        results.append(result)
    return results
