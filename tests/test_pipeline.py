#!/usr/bin/env python3
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "anthropic>=0.40.0",
#     "pydantic>=2.7.0",
#     "pytest>=8.0.0",
#     "requests>=2.31.0",
# ]
# ///
"""
Tests for the processing pipeline and its stages

Covers:
- meeting_extract: prompt context, tolerant JSON parsing, fake Anthropic client
- jira_tickets: issue payload (Spike as labelled Task), per-ticket failures
- slack_summary: Block Kit layout, API error handling
- meeting_pipeline.process_meeting(): stage ordering and failure propagation

External APIs are replaced with mocks; nothing here touches the network.

Run with: uv run pytest tests/test_pipeline.py -v
"""

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from unittest import mock

import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent))
import jira_tickets
import meeting_extract
import meeting_pipeline
import slack_summary
from meeting_models import (
    ActionItem,
    EngineeringTicket,
    JiraTicket,
    MeetingContent,
    MeetingExtraction,
)

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)

EXTRACTION_JSON = {
    'meetingSummary': 'Planned the sprint.',
    'keyDecisions': ['Ship the login fix first'],
    'actionItems': [
        {'description': 'Email the vendor', 'assignee': 'Alice', 'dueDate': 'Friday', 'priority': 'High'},
        {'description': 'Book the retro', 'assignee': None},
    ],
    'engineeringTickets': [
        {'summary': 'Fix login redirect', 'description': 'Users bounce back to /login',
         'issueType': 'Bug', 'priority': 'High', 'acceptanceCriteria': ['Redirect lands on /home']},
        {'summary': 'Evaluate caching', 'description': 'Compare Redis and in-process caches',
         'acceptanceCriteria': None},
    ],
    'followUps': ['Revisit budget'],
}


@pytest.fixture
def config():
    return SimpleNamespace(
        anthropic_api_key='sk-ant-test',
        anthropic_model='claude-test',
        jira_base_url='https://example.atlassian.net',
        jira_email='dev@example.com',
        jira_api_token='jira-token',
        jira_pod='Platform',
        jira_project_key='ENG',
        slack_bot_token='xoxb-123',
        slack_channel_id='C0123',
    )


@pytest.fixture
def meeting():
    return MeetingContent(id='doc-1', title='Sprint Planning', created_at=NOW, updated_at=NOW,
                          notes_markdown='## Notes\nShip it', transcript='[15:00] You: hi')


def _http(status=200, payload=None, text=''):
    resp = mock.Mock()
    resp.status_code = status
    resp.json.return_value = payload
    resp.text = text
    return resp


# ============================================================================
# Extraction
# ============================================================================

class TestParseExtraction:
    def test_full_payload(self):
        extraction = meeting_extract.parse_extraction(json.dumps(EXTRACTION_JSON))
        assert extraction.meeting_summary == 'Planned the sprint.'
        assert extraction.key_decisions == ['Ship the login fix first']
        assert [a.description for a in extraction.action_items] == ['Email the vendor', 'Book the retro']
        assert extraction.action_items[0].due_date == 'Friday'
        assert extraction.action_items[1].priority == 'Medium'
        assert extraction.action_items[1].assignee is None
        bug, caching = extraction.engineering_tickets
        assert bug.issue_type == 'Bug' and bug.acceptance_criteria == ['Redirect lands on /home']
        assert caching.issue_type == 'Task' and caching.priority == 'Medium'
        assert caching.acceptance_criteria is None
        assert extraction.follow_ups == ['Revisit budget']

    def test_code_fences_and_prose_are_tolerated(self):
        text = 'Here you go:\n```json\n{"meetingSummary": "Short sync."}\n```\nThanks'
        extraction = meeting_extract.parse_extraction(text)
        assert extraction.meeting_summary == 'Short sync.'
        assert extraction.engineering_tickets == []

    @pytest.mark.parametrize('text', [
        'no json here',
        '{"meetingSummary": ',
        '{"meetingSummary": "s", }',
        '{"keyDecisions": []}',
    ])
    def test_bad_responses_raise(self, text):
        with pytest.raises(meeting_extract.ExtractionError):
            meeting_extract.parse_extraction(text)

    @pytest.mark.parametrize('field,value', [
        ('keyDecisions', 'not a list'),
        ('actionItems', [{'description': 'Email the vendor', 'priority': 'Urgent'}]),
        ('actionItems', [{'assignee': 'Alice'}]),
        ('engineeringTickets', [{'summary': 'Cache', 'description': 'd', 'issueType': 'Epic'}]),
        ('engineeringTickets', [{'summary': 'Cache', 'description': 'd', 'priority': 'Whenever'}]),
        ('engineeringTickets', [{'summary': 'Cache', 'description': 'd', 'acceptanceCriteria': 'AC'}]),
        ('engineeringTickets', [{'summary': 'Cache'}]),
    ])
    def test_schema_violations_are_rejected(self, field, value):
        """Out-of-schema replies raise instead of being coerced to defaults."""
        reply = {'meetingSummary': 'Planned the sprint.', field: value}
        with pytest.raises(meeting_extract.ExtractionError, match='Invalid extraction response'):
            meeting_extract.parse_extraction(json.dumps(reply))

    def test_models_accept_field_names(self):
        """Code builds extractions by attribute name, the LLM by camelCase alias."""
        ticket = EngineeringTicket(summary='Fix', description='d', issue_type='Spike')
        assert ticket.issue_type == 'Spike'
        assert ActionItem(description='x', due_date='Friday').due_date == 'Friday'


class TestExtractMeetingData:
    def test_calls_messages_api(self, meeting):
        client = mock.Mock()
        client.messages.create.return_value = SimpleNamespace(content=[
            SimpleNamespace(type='text', text='{"meetingSummary": '),
            SimpleNamespace(type='tool_use', text='ignored'),
            SimpleNamespace(type='text', text='"Done."}'),
        ])

        extraction = meeting_extract.extract_meeting_data('sk', meeting, model='claude-test', client=client)

        assert extraction.meeting_summary == 'Done.'
        kwargs = client.messages.create.call_args[1]
        assert kwargs['model'] == 'claude-test'
        assert kwargs['max_tokens'] == meeting_extract.MAX_TOKENS
        prompt = kwargs['messages'][0]['content']
        assert 'Meeting: Sprint Planning' in prompt
        assert '## Enhanced Notes\n## Notes\nShip it' in prompt
        assert '## Transcript' in prompt

    def test_context_omits_empty_sections(self, meeting):
        meeting.transcript = ''
        context = meeting_extract.build_meeting_context(meeting)
        assert '## Transcript' not in context
        assert '## Enhanced Notes' in context


# ============================================================================
# JIRA
# ============================================================================

class TestJira:
    def test_payload(self, config):
        ticket = EngineeringTicket(summary='Fix login', description='Bounce', issue_type='Bug',
                                   priority='High', acceptance_criteria=['Works'])
        fields = jira_tickets.build_issue_payload(config, ticket)['fields']
        assert fields['project'] == {'key': 'ENG'}
        assert fields['issuetype'] == {'name': 'Bug'}
        assert fields['priority'] == {'name': 'High'}
        assert fields[jira_tickets.POD_FIELD] == [{'value': 'Platform'}]
        assert 'labels' not in fields
        kinds = [block['type'] for block in fields['description']['content']]
        assert kinds == ['paragraph', 'heading', 'bulletList']

    def test_spike_is_a_labelled_task(self, config):
        ticket = EngineeringTicket(summary='Evaluate caching', description='', issue_type='Spike')
        fields = jira_tickets.build_issue_payload(config, ticket)['fields']
        assert fields['issuetype'] == {'name': 'Task'}
        assert fields['labels'] == ['spike']
        # Empty description falls back to the summary
        assert fields['description']['content'][0]['content'][0]['text'] == 'Evaluate caching'

    def test_create_ticket(self, config):
        with mock.patch.object(jira_tickets.requests, 'post',
                               return_value=_http(201, {'key': 'ENG-7', 'id': '10007', 'self': 'u'})) as post:
            ticket = jira_tickets.create_jira_ticket(config, EngineeringTicket(summary='S', description='D'))
        assert ticket == JiraTicket(key='ENG-7', id='10007', self_url='u', summary='S')
        assert post.call_args[0][0] == 'https://example.atlassian.net/rest/api/3/issue'
        assert post.call_args[1]['auth'] == ('dev@example.com', 'jira-token')

    def test_one_failure_does_not_stop_the_rest(self, config):
        responses = [
            _http(400, text='bad priority'),
            _http(201, {'key': 'ENG-8', 'id': '10008'}),
        ]
        tickets = [EngineeringTicket(summary='A', description=''), EngineeringTicket(summary='B', description='')]
        with mock.patch.object(jira_tickets.requests, 'post', side_effect=responses):
            created = jira_tickets.create_jira_tickets(config, tickets)
        assert [t.key for t in created] == ['ENG-8']

    def test_network_error(self, config):
        with mock.patch.object(jira_tickets.requests, 'post', side_effect=requests.Timeout('slow')):
            with pytest.raises(jira_tickets.JiraError, match='slow'):
                jira_tickets.create_jira_ticket(config, EngineeringTicket(summary='A', description=''))


# ============================================================================
# Slack
# ============================================================================

class TestSlack:
    def _extraction(self):
        return MeetingExtraction(
            meeting_summary='Planned the sprint.',
            key_decisions=['Ship it'],
            action_items=[ActionItem(description='Email vendor', assignee='Alice', priority='High')],
            follow_ups=['Budget'],
        )

    def test_blocks(self, meeting):
        tickets = [JiraTicket(key='ENG-7', id='1', self_url='', summary='Fix login')]
        blocks = slack_summary.build_blocks(meeting, self._extraction(), tickets, 'https://example.atlassian.net')
        assert blocks[0]['type'] == 'header'
        assert 'Sprint Planning' in blocks[0]['text']['text']
        texts = '\n'.join(b['text']['text'] for b in blocks if b['type'] == 'section')
        assert '*Key Decisions*' in texts
        assert 'Email vendor → _Alice_' in texts
        assert '<https://example.atlassian.net/browse/ENG-7|ENG-7>: Fix login' in texts
        assert '*Follow-ups*' in texts

    def test_empty_sections_are_skipped(self, meeting):
        blocks = slack_summary.build_blocks(meeting, MeetingExtraction(meeting_summary='Quiet.'), [], '')
        assert [b['type'] for b in blocks] == ['header', 'context', 'divider', 'section']

    def test_post_returns_ts(self, config, meeting):
        with mock.patch.object(slack_summary.requests, 'post',
                               return_value=_http(200, {'ok': True, 'ts': '1710.5'})) as post:
            ts = slack_summary.post_slack_summary(config, meeting, self._extraction(), [])
        assert ts == '1710.5'
        kwargs = post.call_args[1]
        assert kwargs['json']['channel'] == 'C0123'
        assert kwargs['headers']['Authorization'] == 'Bearer xoxb-123'

    def test_not_ok_raises(self, config, meeting):
        with mock.patch.object(slack_summary.requests, 'post',
                               return_value=_http(200, {'ok': False, 'error': 'channel_not_found'})):
            with pytest.raises(slack_summary.SlackError, match='channel_not_found'):
                slack_summary.post_slack_summary(config, meeting, self._extraction(), [])


# ============================================================================
# process_meeting()
# ============================================================================

class TestProcessMeeting:
    def test_runs_all_stages(self, config, meeting):
        extraction = MeetingExtraction(
            meeting_summary='s',
            engineering_tickets=[EngineeringTicket(summary='Fix', description='')],
        )
        created = [JiraTicket(key='ENG-1', id='1', self_url='', summary='Fix')]
        with mock.patch.object(meeting_pipeline, 'extract_meeting_data', return_value=extraction) as extract, \
             mock.patch.object(meeting_pipeline, 'create_jira_tickets', return_value=created) as create, \
             mock.patch.object(meeting_pipeline, 'post_slack_summary', return_value='1.0') as post:
            result = meeting_pipeline.process_meeting(config, meeting)

        extract.assert_called_once_with('sk-ant-test', meeting, model='claude-test')
        create.assert_called_once_with(config, extraction.engineering_tickets)
        post.assert_called_once_with(config, meeting, extraction, created)
        assert result.meeting_id == 'doc-1'
        assert result.jira_tickets == created
        assert result.slack_message_ts == '1.0'

    def test_no_tickets_skips_jira(self, config, meeting):
        with mock.patch.object(meeting_pipeline, 'extract_meeting_data',
                               return_value=MeetingExtraction(meeting_summary='s')), \
             mock.patch.object(meeting_pipeline, 'create_jira_tickets') as create, \
             mock.patch.object(meeting_pipeline, 'post_slack_summary', return_value='1.0'):
            result = meeting_pipeline.process_meeting(config, meeting)
        create.assert_not_called()
        assert result.jira_tickets == []

    def test_slack_failure_propagates(self, config, meeting):
        with mock.patch.object(meeting_pipeline, 'extract_meeting_data',
                               return_value=MeetingExtraction(meeting_summary='s')), \
             mock.patch.object(meeting_pipeline, 'post_slack_summary',
                               side_effect=slack_summary.SlackError('invalid_auth')):
            with pytest.raises(slack_summary.SlackError):
                meeting_pipeline.process_meeting(config, meeting)
