"""
Revision Engine API Tests
=========================
Exercises the JSON endpoints through the Flask test client.

Run with: python -m pytest tests/test_routes.py -v
"""

import json
import unittest

from revision_engine.app import create_app
from revision_engine.sessions import reset_session_manager

PREFIX = '/api/revision'


class RevisionApiTestCase(unittest.TestCase):
    """Shared client setup."""

    def setUp(self):
        """Set up test client with a fresh session registry."""
        reset_session_manager()
        self.app = create_app()
        self.app.config['TESTING'] = True
        self.client = self.app.test_client()

    def tearDown(self):
        """Clean up."""
        reset_session_manager()

    def post(self, path, body=None):
        response = self.client.post(PREFIX + path, json=body if body is not None else {})
        return response, json.loads(response.data)

    def get(self, path):
        response = self.client.get(PREFIX + path)
        return response, json.loads(response.data)

    def open_session(self, document, **extra):
        response, data = self.post('/sessions', {'document': document, **extra})
        self.assertEqual(response.status_code, 201)
        return data['session_id']


class TestDiffEndpoints(RevisionApiTestCase):
    """Test snapshot comparison endpoints."""

    def test_diff_report(self):
        """
        Test /diff returns a full report.

        Expects: 200, one insertion record and the document metrics.
        """
        response, data = self.post('/diff', {
            'baseline': "The quick fox jumps.",
            'current': "The quick brown fox jumps."
        })
        self.assertEqual(response.status_code, 200)
        self.assertTrue(data['success'])
        report = data['report']
        self.assertEqual(report['stats']['insertions'], 1)
        self.assertEqual(report['changes'][0]['inserted_text'], "brown ")
        self.assertEqual(report['summary'], "1 insertion")
        self.assertIn('change_magnitude', report)
        self.assertIn('view_mode', report)

    def test_diff_requires_strings(self):
        """
        Test /diff rejects missing snapshots.

        Expects: 400 with VALIDATION_ERROR naming the field.
        """
        response, data = self.post('/diff', {'baseline': "text"})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(data['success'])
        self.assertEqual(data['error']['code'], 'VALIDATION_ERROR')
        self.assertEqual(data['error']['details']['field'], 'current')
        self.assertIn('correlation_id', data['error'])

    def test_diff_bad_granularity(self):
        """
        Test /diff rejects unknown granularity.

        Expects: 400.
        """
        response, _ = self.post('/diff', {'baseline': "a", 'current': "b", 'granularity': 'page'})
        self.assertEqual(response.status_code, 400)

    def test_non_json_body(self):
        """
        Test non-JSON bodies are rejected.

        Expects: 400 with VALIDATION_ERROR.
        """
        response = self.client.post(PREFIX + '/diff', data="plain text",
                                    content_type='text/plain')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(json.loads(response.data)['error']['code'], 'VALIDATION_ERROR')

    def test_align_text(self):
        """
        Test /align on raw text.

        Expects: one pair per paragraph with status.
        """
        response, data = self.post('/align', {
            'baseline': "One.\n\nTwo.",
            'current': "Two.\n\nOne."
        })
        self.assertEqual(response.status_code, 200)
        pairs = [(p['old_index'], p['new_index']) for p in data['pairs']]
        self.assertEqual(pairs, [(0, 1), (1, 0)])
        self.assertTrue(all(p['status'] == 'unchanged' for p in data['pairs']))

    def test_align_chunks(self):
        """
        Test /align on pre-split chunks.

        Expects: an added paragraph appears as (None, j).
        """
        response, data = self.post('/align', {
            'baseline_chunks': ["Intro"],
            'current_chunks': ["Intro", "Brand new closing thoughts"]
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['pairs'][1]['status'], 'added')

    def test_align_bad_chunks(self):
        """
        Test /align validates chunk lists.

        Expects: 400.
        """
        response, _ = self.post('/align', {'baseline_chunks': "nope", 'current_chunks': []})
        self.assertEqual(response.status_code, 400)

    def test_merge_selected_changes(self):
        """
        Test /merge applies only the accepted changes.

        Expects: the baseline with the first replacement applied.
        """
        baseline = "The cat sat on the mat."
        current = "The dog sat on a mat."
        _, data = self.post('/diff', {'baseline': baseline, 'current': current})
        first_id = data['report']['changes'][0]['id']

        response, data = self.post('/merge', {
            'baseline': baseline, 'current': current, 'accepted_ids': [first_id]
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['text'], "The dog sat on the mat.")

    def test_merge_defaults_to_baseline(self):
        """
        Test /merge without accepted ids.

        Expects: the baseline text.
        """
        response, data = self.post('/merge', {'baseline': "one two", 'current': "one three"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['text'], "one two")

    def test_merge_bad_ids(self):
        """
        Test /merge validates the accepted ids.

        Expects: 400 for a non-list, 404 for an id the diff never produced.
        """
        response, data = self.post('/merge', {'baseline': "a", 'current': "b",
                                              'accepted_ids': "change-0"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(data['error']['details']['field'], 'accepted_ids')

        response, data = self.post('/merge', {'baseline': "a", 'current': "b",
                                              'accepted_ids': ["change-7"]})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(data['error']['code'], 'UNKNOWN_CHANGE')


class TestSessionEndpoints(RevisionApiTestCase):
    """Test live tracking sessions over HTTP."""

    def test_session_round_trip(self):
        """
        Test edit, inspect and reject-all.

        Expects: edits are recorded, reject-all restores the original and
        returns a reversal patch.
        """
        session_id = self.open_session("Hello world", author={'id': 'u1', 'display_name': 'Ana'})

        response, data = self.post(f'/sessions/{session_id}/edits', {
            'edits': [{'start': 5, 'end': 5, 'text': ','}]
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['document'], "Hello, world")
        self.assertEqual(len(data['changes']), 1)
        self.assertEqual(data['changes'][0]['author']['display_name'], 'Ana')

        response, data = self.post(f'/sessions/{session_id}/reject')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['document'], "Hello world")
        self.assertEqual(data['changes'], [])
        self.assertEqual(data['patch']['source'], 'reversal')
        self.assertEqual(data['patch']['steps'], [{'start': 5, 'end': 6, 'text': ''}])

    def test_single_edit_body(self):
        """
        Test a bare edit object is accepted.

        Expects: the edit applies.
        """
        session_id = self.open_session("abc")
        _, data = self.post(f'/sessions/{session_id}/edits', {'start': 0, 'end': 1, 'text': 'X'})
        self.assertEqual(data['document'], "Xbc")
        self.assertEqual(data['changes'][0]['kind'], 'replacement')

    def test_accept_single_change(self):
        """
        Test accepting one change by id.

        Expects: the change disappears and the text is untouched; accepting
        again is a no-op; rejecting it afterwards is a conflict.
        """
        session_id = self.open_session("abc")
        _, data = self.post(f'/sessions/{session_id}/edits', {'start': 3, 'end': 3, 'text': 'd'})
        change_id = data['changes'][0]['id']

        response, data = self.post(f'/sessions/{session_id}/accept', {'change_id': change_id})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['document'], "abcd")
        self.assertEqual(data['changes'], [])
        self.assertEqual(data['patch']['change_ids'], [change_id])

        response, data = self.post(f'/sessions/{session_id}/accept', {'change_id': change_id})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['patch']['steps'], [])

        response, data = self.post(f'/sessions/{session_id}/reject', {'change_id': change_id})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(data['error']['code'], 'INVALID_TRANSITION')

    def test_unknown_change(self):
        """
        Test resolving an id that was never issued.

        Expects: 404 with UNKNOWN_CHANGE.
        """
        session_id = self.open_session("abc")
        response, data = self.post(f'/sessions/{session_id}/reject', {'change_id': 'tc-0000'})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(data['error']['code'], 'UNKNOWN_CHANGE')

    def test_out_of_range_edit(self):
        """
        Test an edit past the end of the document.

        Expects: 400 and the document unchanged.
        """
        session_id = self.open_session("abc")
        response, _ = self.post(f'/sessions/{session_id}/edits', {'start': 2, 'end': 9, 'text': ''})
        self.assertEqual(response.status_code, 400)
        _, data = self.get(f'/sessions/{session_id}/changes')
        self.assertEqual(data['document'], "abc")

    def test_failed_batch_applies_nothing(self):
        """
        Test a batch whose second edit is out of range.

        Expects: 400 naming the failing edit, and neither edit applied.
        """
        session_id = self.open_session("Hello")
        response, data = self.post(f'/sessions/{session_id}/edits', {'edits': [
            {'start': 5, 'end': 5, 'text': '!'},
            {'start': 50, 'end': 60}
        ]})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(data['error']['details']['index'], 1)
        _, data = self.get(f'/sessions/{session_id}/changes')
        self.assertEqual(data['document'], "Hello")
        self.assertEqual(data['changes'], [])

    def test_non_object_bodies_rejected(self):
        """
        Test accept, reject and undo with a JSON list body.

        Expects: 400 with VALIDATION_ERROR rather than a server error.
        """
        session_id = self.open_session("abc")
        for action in ('accept', 'reject', 'undo'):
            response = self.client.post(f'{PREFIX}/sessions/{session_id}/{action}', json=[1])
            self.assertEqual(response.status_code, 400, action)
            self.assertEqual(json.loads(response.data)['error']['code'], 'VALIDATION_ERROR')

    def test_empty_body_accepts_all(self):
        """
        Test accept with no request body at all.

        Expects: every pending change accepted.
        """
        session_id = self.open_session("abc")
        self.post(f'/sessions/{session_id}/edits', {'start': 3, 'end': 3, 'text': 'd'})
        response = self.client.post(f'{PREFIX}/sessions/{session_id}/accept')
        self.assertEqual(response.status_code, 200)
        data = json.loads(response.data)
        self.assertEqual(data['document'], "abcd")
        self.assertEqual(data['changes'], [])

    def test_bad_edit_source(self):
        """
        Test an unknown edit source.

        Expects: 400.
        """
        session_id = self.open_session("abc")
        response, _ = self.post(f'/sessions/{session_id}/edits',
                                {'start': 0, 'end': 0, 'text': 'x', 'source': 'magic'})
        self.assertEqual(response.status_code, 400)

    def test_undo_resyncs(self):
        """
        Test external undo with the host's text.

        Expects: pending changes dropped and the document replaced.
        """
        session_id = self.open_session("abc")
        self.post(f'/sessions/{session_id}/edits', {'start': 0, 'end': 0, 'text': 'x'})
        _, data = self.post(f'/sessions/{session_id}/undo', {'document': "abc"})
        self.assertEqual(data['document'], "abc")
        self.assertEqual(data['changes'], [])

    def test_toggle_tracking(self):
        """
        Test disabling tracking.

        Expects: subsequent edits apply without being recorded.
        """
        session_id = self.open_session("abc")
        response, data = self.post(f'/sessions/{session_id}/tracking', {'enabled': False})
        self.assertEqual(response.status_code, 200)
        self.assertFalse(data['enabled'])
        _, data = self.post(f'/sessions/{session_id}/edits', {'start': 0, 'end': 0, 'text': 'x'})
        self.assertEqual(data['document'], "xabc")
        self.assertEqual(data['changes'], [])

        response, _ = self.post(f'/sessions/{session_id}/tracking', {'enabled': 'yes'})
        self.assertEqual(response.status_code, 400)

    def test_session_lifecycle(self):
        """
        Test listing, fetching and closing sessions.

        Expects: closed sessions return 404 with SESSION_NOT_FOUND.
        """
        session_id = self.open_session("Body", metadata={'name': 'draft'})

        _, data = self.get('/sessions')
        self.assertEqual([s['session_id'] for s in data['sessions']], [session_id])

        response, data = self.get(f'/sessions/{session_id}')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['session']['document'], "Body")
        self.assertEqual(data['session']['metadata'], {'name': 'draft'})

        response = self.client.delete(f'{PREFIX}/sessions/{session_id}')
        self.assertEqual(response.status_code, 200)

        response, data = self.get(f'/sessions/{session_id}')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(data['error']['code'], 'SESSION_NOT_FOUND')

        response = self.client.delete(f'{PREFIX}/sessions/{session_id}')
        self.assertEqual(response.status_code, 404)

    def test_invalid_author(self):
        """
        Test malformed authors are rejected.

        Expects: 400.
        """
        response, _ = self.post('/sessions', {'document': "x", 'author': {'name': 'no id'}})
        self.assertEqual(response.status_code, 400)

    def test_correlation_id_echoed(self):
        """
        Test the caller's correlation id is reported on errors.

        Expects: the X-Correlation-ID header value in the error body.
        """
        response = self.client.get(f'{PREFIX}/sessions/missing',
                                   headers={'X-Correlation-ID': 'req-42'})
        data = json.loads(response.data)
        self.assertEqual(data['error']['correlation_id'], 'req-42')


class TestHealth(RevisionApiTestCase):
    """Test health endpoint."""

    def test_health(self):
        """
        Test health reports status and session count.

        Expects: 200 with status='healthy'.
        """
        self.open_session("x")
        response, data = self.get('/health')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data['status'], 'healthy')
        self.assertEqual(data['sessions'], 1)


if __name__ == '__main__':
    unittest.main()
