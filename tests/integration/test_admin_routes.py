"""
Admin API integration tests: clients, hypotheses and journey outcomes.
"""

from extensions import db
from revenue_database import ContentVersion, ContentVersionOutcome, ClientOutcomeAudit


class TestClientRoutes:

    def test_create_client_generates_token_and_pages(self, client, clean_db):
        response = client.post('/api/admin/clients', json={
            'company': 'Harbor Plumbing',
            'contact_name': 'Dana Ortiz',
            'email': 'dana@harbor.example',
            'hypothesis': 'Same-day quotes convert emergency callers',
        })

        assert response.status_code == 201
        body = response.get_json()
        assert len(body['token']) == 5
        assert body['token'][0] == 'G'
        assert body['status'] == 'pending'

        pages = db.session.query(ContentVersion).filter_by(client_id=body['id'], is_current=True).all()
        assert sorted(page.page_type for page in pages) == ['activation', 'agreement', 'confirmation', 'processing']
        assert all(page.version_number == 1 for page in pages)

    def test_create_client_requires_company_and_hypothesis(self, client, clean_db):
        response = client.post('/api/admin/clients', json={'company': 'No Hypothesis Co'})
        assert response.status_code == 400
        assert response.get_json()['code'] == 'VALIDATION_ERROR'

    def test_duplicate_token_conflicts(self, client, create_client):
        create_client(token='G7001')
        response = client.post('/api/admin/clients', json={
            'company': 'Second Co',
            'hypothesis': 'Another journey hypothesis',
            'token': 'G7001',
        })
        assert response.status_code == 409

    def test_lookup_by_token(self, client, create_client):
        create_client(token='G7002')
        response = client.get('/api/admin/clients/G7002')
        assert response.status_code == 200
        assert response.get_json()['company'] == 'Acme Roofing'

    def test_lookup_by_id(self, client, create_client):
        record = create_client(token='G7006')
        response = client.get(f'/api/admin/clients/{record.id}')
        assert response.status_code == 200
        assert response.get_json()['token'] == 'G7006'
        assert client.get('/api/admin/clients/999999').status_code == 404

    def test_malformed_token_is_rejected(self, client, clean_db):
        assert client.get('/api/admin/clients/g12').status_code == 400
        assert client.get('/api/admin/clients/GG123').status_code == 400

    def test_unknown_token_is_not_found(self, client, clean_db):
        assert client.get('/api/admin/clients/Z9999').status_code == 404

    def test_list_and_search_clients(self, client, create_client):
        create_client(token='G7003', company='Harbor Plumbing')
        create_client(token='G7004', company='Summit Roofing')

        everyone = client.get('/api/admin/clients').get_json()['clients']
        assert {entry['token'] for entry in everyone} == {'G7003', 'G7004'}

        matches = client.get('/api/admin/clients?search=harbor').get_json()['clients']
        assert [entry['token'] for entry in matches] == ['G7003']

    def test_status_moves_forward_only(self, client, create_client):
        record = create_client(token='G7005')

        response = client.post(f'/api/admin/clients/{record.id}/status', json={'status': 'archived'})
        assert response.status_code == 200
        assert response.get_json()['status'] == 'archived'

        response = client.post(f'/api/admin/clients/{record.id}/status', json={'status': 'activated'})
        assert response.status_code == 400
        assert client.get('/api/admin/clients/G7005').get_json()['status'] == 'archived'


class TestHypothesisRoutes:

    def test_short_hypothesis_is_rejected_and_nothing_saved(self, client, create_client):
        record = create_client(token='G7101')

        response = client.post(f'/api/admin/clients/{record.id}/hypotheses', json={
            'page_type': 'activation',
            'hypothesis': 'too short',
        })

        assert response.status_code == 400
        history = client.get(f'/api/admin/clients/{record.id}/pages/activation/history').get_json()['versions']
        assert len(history) == 1

    def test_new_version_becomes_the_only_current_one(self, client, create_client):
        record = create_client(token='G7102')

        response = client.post(f'/api/admin/clients/{record.id}/hypotheses', json={
            'page_type': 'activation',
            'hypothesis': 'Leading with the warranty lowers hesitation',
            'content': {'title': 'Your roof, guaranteed', 'body': 'Ten year warranty.', 'metadata': {}},
            'iteration_notes': 'Swapped headline',
        })

        assert response.status_code == 201
        assert response.get_json()['version_number'] == 2

        history = client.get(f'/api/admin/clients/{record.id}/pages/activation/history').get_json()['versions']
        assert [version['version_number'] for version in history] == [2, 1]
        assert [version['is_current'] for version in history] == [True, False]
        assert history[0]['content']['title'] == 'Your roof, guaranteed'

    def test_content_defaults_to_current_version(self, client, create_client):
        record = create_client(token='G7103')
        original = client.get(f'/api/admin/clients/{record.id}/pages/agreement/history').get_json()['versions'][0]

        response = client.post(f'/api/admin/clients/{record.id}/hypotheses', json={
            'page_type': 'agreement',
            'hypothesis': 'Shorter terms page increases signatures',
        })

        assert response.status_code == 201
        assert response.get_json()['content'] == original['content']

    def test_unknown_page_type_is_rejected(self, client, create_client):
        record = create_client(token='G7104')
        response = client.post(f'/api/admin/clients/{record.id}/hypotheses', json={
            'page_type': 'pricing',
            'hypothesis': 'Pricing page hypothesis text',
        })
        assert response.status_code == 400

    def test_unknown_client_is_not_found(self, client, clean_db):
        response = client.post('/api/admin/clients/4242/hypotheses', json={
            'page_type': 'activation',
            'hypothesis': 'A long enough hypothesis',
        })
        assert response.status_code == 404

    def test_version_outcome_labels_are_appended(self, client, create_client):
        record = create_client(token='G7103')
        version_id = client.get(
            f'/api/admin/clients/{record.id}/pages/activation/history'
        ).get_json()['versions'][0]['id']

        first = client.post(f'/api/admin/versions/{version_id}/outcome', json={'outcome': 'failure'})
        second = client.post(f'/api/admin/versions/{version_id}/outcome', json={
            'outcome': 'success', 'notes': 'Paid on second visit', 'recorded_by': 'admin-2'
        })

        assert first.status_code == 200
        assert second.get_json()['outcome'] == 'success'
        assert db.session.query(ContentVersionOutcome).filter_by(content_version_id=version_id).count() == 2

    def test_version_outcome_validation(self, client, create_client):
        record = create_client(token='G7104')
        version_id = client.get(
            f'/api/admin/clients/{record.id}/pages/agreement/history'
        ).get_json()['versions'][0]['id']

        assert client.post(f'/api/admin/versions/{version_id}/outcome', json={'outcome': 'great'}).status_code == 400
        assert client.post('/api/admin/versions/99999/outcome', json={'outcome': 'success'}).status_code == 404


class TestOutcomeRoutes:

    def test_mark_outcome_from_pending(self, client, create_client):
        record = create_client(token='G7201')

        response = client.post(f'/api/admin/clients/{record.id}/outcome', json={
            'outcome': 'ghosted',
            'notes': 'No reply after two follow-ups',
        })

        assert response.status_code == 200
        assert response.get_json()['journey_outcome'] == 'ghosted'
        assert response.get_json()['outcome_notes'] == 'No reply after two follow-ups'

    def test_terminal_outcome_cannot_be_relabelled_without_override(self, client, create_client):
        record = create_client(token='G7202')
        client.post(f'/api/admin/clients/{record.id}/outcome', json={'outcome': 'ghosted'})

        response = client.post(f'/api/admin/clients/{record.id}/outcome', json={'outcome': 'responded'})

        assert response.status_code == 400
        assert client.get('/api/admin/clients/G7202').get_json()['journey_outcome'] == 'ghosted'

    def test_override_relabels_and_audits(self, client, create_client):
        record = create_client(token='G7203')
        client.post(f'/api/admin/clients/{record.id}/outcome', json={'outcome': 'ghosted'})

        response = client.post(f'/api/admin/clients/{record.id}/outcome/override', json={
            'outcome': 'responded',
            'admin_id': 'admin-3',
            'reason': 'Client replied by email',
        })

        assert response.status_code == 200
        assert response.get_json()['journey_outcome'] == 'responded'
        override = db.session.query(ClientOutcomeAudit)\
            .filter_by(client_id=record.id, is_override=True).one()
        assert override.previous_outcome == 'ghosted'
        assert override.changed_by == 'admin-3'

    def test_invalid_outcome_is_rejected(self, client, create_client):
        record = create_client(token='G7204')
        response = client.post(f'/api/admin/clients/{record.id}/outcome', json={'outcome': 'maybe'})
        assert response.status_code == 400

    def test_outcome_audit_lists_changes_newest_first(self, client, create_client):
        record = create_client(token='G7205')
        client.post(f'/api/admin/clients/{record.id}/outcome', json={'outcome': 'ghosted'})
        client.post(f'/api/admin/clients/{record.id}/outcome/override', json={
            'outcome': 'pending', 'admin_id': 'admin-4', 'reason': 'Marked by mistake'
        })

        audit = client.get(f'/api/admin/clients/{record.id}/outcome/audit').get_json()['audit']

        assert [(entry['previous_outcome'], entry['new_outcome']) for entry in audit] == [
            ('ghosted', 'pending'), ('pending', 'ghosted')
        ]
        assert audit[0]['is_override'] is True

    def test_bulk_marking_reports_partial_failure(self, client, create_client):
        first = create_client(token='G7301')
        second = create_client(company='Ghosted Co', token='G7302')
        client.post(f'/api/admin/clients/{second.id}/outcome', json={'outcome': 'ghosted'})

        response = client.post('/api/admin/clients/outcomes/bulk', json={
            'client_ids': [first.id, second.id, 999999],
            'outcome': 'responded',
        })

        assert response.status_code == 200
        body = response.get_json()
        assert body['total'] == 3
        assert body['succeeded'] == 1
        assert body['failed'] == 2
        by_id = {entry['client_id']: entry for entry in body['results']}
        assert by_id[first.id]['success'] is True
        assert by_id[second.id]['error_code'] == 'VALIDATION_ERROR'
        assert by_id[999999]['error_code'] == 'NOT_FOUND'

        assert client.get('/api/admin/clients/G7301').get_json()['journey_outcome'] == 'responded'
        assert client.get('/api/admin/clients/G7302').get_json()['journey_outcome'] == 'ghosted'

    def test_bulk_marking_validates_input(self, client, clean_db):
        assert client.post('/api/admin/clients/outcomes/bulk', json={'outcome': 'ghosted'}).status_code == 400
        response = client.post('/api/admin/clients/outcomes/bulk', json={'client_ids': [1], 'outcome': 'bogus'})
        assert response.status_code == 400


class TestPaymentSessionRoutes:

    def test_paid_client_cannot_start_another_session(self, client, create_client, stripe_checkout):
        record = create_client(token='G7401')
        record.payment_status = 'paid'
        db.session.commit()

        response = client.post(f'/api/admin/clients/{record.id}/payment-sessions', json={})

        assert response.status_code == 409
        assert stripe_checkout == []

    def test_invalid_amount_is_rejected(self, client, create_client, stripe_checkout):
        record = create_client(token='G7402')
        response = client.post(f'/api/admin/clients/{record.id}/payment-sessions', json={'amount': -5})
        assert response.status_code == 400

    def test_snapshots_are_listed_and_compared(self, client, create_client, stripe_checkout):
        record = create_client(token='G7403')
        first = client.post(f'/api/admin/clients/{record.id}/payment-sessions', json={}).get_json()
        client.post(f'/api/admin/clients/{record.id}/hypotheses', json={
            'page_type': 'activation',
            'hypothesis': 'Leading with the warranty lowers hesitation',
            'content': {'title': 'Your roof, guaranteed', 'body': 'Ten year warranty.', 'metadata': {}},
        })
        second = client.post(f'/api/admin/clients/{record.id}/payment-sessions', json={}).get_json()

        snapshots = client.get(f'/api/admin/clients/{record.id}/snapshots').get_json()['snapshots']
        assert {snapshot['id'] for snapshot in snapshots} == {first['snapshot_id'], second['snapshot_id']}

        response = client.get(
            f"/api/admin/snapshots/compare?first={first['snapshot_id']}&second={second['snapshot_id']}"
        )
        assert response.status_code == 200
        body = response.get_json()
        assert body['same_content'] is False
        assert {change['page_type'] for change in body['changes']} == {'activation'}
        assert 0.0 < body['similarity'] < 1.0

    def test_snapshot_compare_requires_both_ids(self, client, clean_db):
        assert client.get('/api/admin/snapshots/compare?first=1').status_code == 400
        assert client.get('/api/admin/snapshots/compare?first=1&second=2').status_code == 404


class TestHealth:

    def test_health_reports_database(self, client, clean_db):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json()['database'] == 'connected'
        assert response.headers['X-Request-ID']
