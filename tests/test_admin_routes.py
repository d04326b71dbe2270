from __future__ import annotations

from unittest.mock import patch

from golfimprover.models import Feedback


def test_generate_recaps_requires_bearer_key(app, client) -> None:
    with patch.object(app.recap_service, 'generate_monthly_recaps') as mock_job:
        missing = client.post('/api/admin/generate-recaps')
        wrong = client.post('/api/admin/generate-recaps', headers={'Authorization': 'Bearer nope'})

    assert missing.status_code == 401
    assert missing.get_json() == {'error': 'Unauthorized'}
    assert wrong.status_code == 401
    mock_job.assert_not_called()


def test_generate_recaps_unauthorized_when_key_unset(make_app) -> None:
    app = make_app(admin_api_key=None)

    with patch.object(app.recap_service, 'generate_monthly_recaps') as mock_job:
        response = app.test_client().post(
            '/api/admin/generate-recaps', headers={'Authorization': 'Bearer anything'}
        )

    assert response.status_code == 401
    mock_job.assert_not_called()


def test_generate_recaps_returns_summary(app, client) -> None:
    app.storage_service.create_user_profile('u1', {'email': 'a@example.com', 'handicap': 12.0})

    response = client.post(
        '/api/admin/generate-recaps',
        headers={'Authorization': 'Bearer admin-key'},
        json={'month': '2024-05'},
    )

    assert response.status_code == 200
    body = response.get_json()
    assert body['success'] is True
    assert body['recapsGenerated'] == 1
    assert body['month'] == '2024-05'
    assert app.storage_service.get_monthly_recap_by_month('u1', '2024-05') is not None


def test_generate_recaps_failure_is_500(app, client) -> None:
    with patch.object(app.recap_service, 'generate_monthly_recaps', side_effect=RuntimeError('store down')):
        response = client.post('/api/admin/generate-recaps', headers={'Authorization': 'Bearer admin-key'})

    assert response.status_code == 500
    assert response.get_json() == {'error': 'store down'}


def test_generate_recaps_rejects_get(client) -> None:
    response = client.get('/api/admin/generate-recaps')

    assert response.status_code == 405
    assert response.get_json() == {'error': 'Method not allowed'}


def test_cron_trigger_uses_cron_secret(app, client) -> None:
    summary = {'month': '2024-05', 'recapsGenerated': 0, 'skipped': 0, 'failed': 0}
    with patch.object(app.recap_service, 'generate_monthly_recaps', return_value=summary) as mock_job:
        denied = client.get('/api/cron/monthly-recaps', headers={'Authorization': 'Bearer admin-key'})
        allowed = client.get('/api/cron/monthly-recaps', headers={'Authorization': 'Bearer cron-key'})

    assert denied.status_code == 401
    assert allowed.status_code == 200
    assert allowed.get_json()['month'] == '2024-05'
    mock_job.assert_called_once_with()


def test_openai_proxy_requires_prompt(client) -> None:
    response = client.post('/api/openai', json={'type': 'plan'})

    assert response.status_code == 400
    assert response.get_json() == {'error': 'Prompt is required'}


def test_openai_proxy_returns_model_text(app, client) -> None:
    with patch.object(app.ai_service, 'complete_json', return_value='{"ok": true}') as mock_complete:
        response = client.post('/api/openai', json={'prompt': 'Plan my week', 'type': 'plan'})

    assert response.status_code == 200
    assert response.get_json() == {'response': '{"ok": true}', 'type': 'plan'}
    mock_complete.assert_called_once_with('Plan my week', 'plan')


def test_openai_proxy_reports_failures(app, client) -> None:
    with patch.object(app.ai_service, 'complete_json', side_effect=RuntimeError('quota exceeded')):
        response = client.post('/api/openai', json={'prompt': 'Plan my week'})

    assert response.status_code == 500
    assert response.get_json() == {'error': 'Failed to generate content: quota exceeded'}


def test_openai_proxy_rejects_get(client) -> None:
    response = client.get('/api/openai')

    assert response.status_code == 405
    assert response.get_json() == {'error': 'Method not allowed'}


def test_feedback_listing_requires_admin_key(client) -> None:
    missing = client.get('/api/admin/feedback')
    wrong = client.get('/api/admin/feedback', headers={'Authorization': 'Bearer cron-key'})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert wrong.get_json() == {'error': 'Unauthorized'}


def test_feedback_listing_filters_by_status(app, client) -> None:
    app.storage_service.add_feedback(Feedback(type='bug', message='Button broken'))
    app.storage_service.add_feedback(Feedback(type='idea', message='Dark mode', status='resolved'))
    headers = {'Authorization': 'Bearer admin-key'}

    everything = client.get('/api/admin/feedback', headers=headers)
    resolved = client.get('/api/admin/feedback?status=resolved', headers=headers)

    assert everything.status_code == 200
    assert {item['message'] for item in everything.get_json()['feedback']} == {'Button broken', 'Dark mode'}
    assert [item['message'] for item in resolved.get_json()['feedback']] == ['Dark mode']
