"""
Admin JSON API for clients, hypotheses, outcomes, correlations and dashboards.
"""
from flask import Blueprint, jsonify, request, current_app, g
from logging_config import get_logger, security_logger

logger = get_logger(__name__)

admin_bp = Blueprint('admin', __name__)

ERROR_STATUS = {
    'VALIDATION_ERROR': 400,
    'NOT_FOUND': 404,
    'CONFLICT': 409,
}


def _json_body():
    return request.get_json(silent=True) or {}


def _error_response(result):
    status = ERROR_STATUS.get(result.error_code, 500)
    if status == 500:
        logger.error("Admin request failed", path=request.path, code=result.error_code,
                     error=result.error, request_id=getattr(g, 'request_id', None))
    return jsonify({'error': result.error, 'code': result.error_code}), status


def _validation_error(message):
    return jsonify({'error': message, 'code': 'VALIDATION_ERROR'}), 400


# --- Clients ---

@admin_bp.route('/clients', methods=['POST'])
def create_client():
    data = _json_body()
    result = current_app.services.get('client').create_client(
        company=data.get('company'),
        contact_name=data.get('contact_name'),
        email=data.get('email'),
        hypothesis=data.get('hypothesis'),
        token=data.get('token')
    )
    if result.is_failure:
        return _error_response(result)
    return jsonify(result.data.to_dict()), 201


@admin_bp.route('/clients', methods=['GET'])
def list_clients():
    result = current_app.services.get('client').list_clients(
        search=request.args.get('search'),
        limit=request.args.get('limit', 100, type=int)
    )
    return jsonify({'clients': [client.to_dict() for client in result.data]})


@admin_bp.route('/clients/<token>', methods=['GET'])
def get_client(token):
    result = current_app.services.get('client').get_client_by_token(token)
    if result.is_failure:
        return _error_response(result)
    return jsonify(result.data.to_dict())


@admin_bp.route('/clients/<int:client_id>', methods=['GET'])
def get_client_by_id(client_id):
    result = current_app.services.get('client').get_client(client_id)
    if result.is_failure:
        return _error_response(result)
    return jsonify(result.data.to_dict())


@admin_bp.route('/clients/<int:client_id>/status', methods=['POST'])
def update_client_status(client_id):
    result = current_app.services.get('client').update_status(client_id, _json_body().get('status'))
    if result.is_failure:
        return _error_response(result)
    return jsonify(result.data.to_dict())


@admin_bp.route('/clients/<int:client_id>/snapshots', methods=['GET'])
def client_snapshots(client_id):
    limit = request.args.get('limit', 20, type=int)
    result = current_app.services.get('content_snapshot').get_client_snapshots(client_id, limit=limit)
    return jsonify({'snapshots': [snapshot.to_dict() for snapshot in result.data]})


@admin_bp.route('/snapshots/compare', methods=['GET'])
def compare_snapshots():
    first_id = request.args.get('first', type=int)
    second_id = request.args.get('second', type=int)
    if first_id is None or second_id is None:
        return _validation_error("first and second snapshot ids are required")

    result = current_app.services.get('content_snapshot').compare_snapshots(first_id, second_id)
    if result.is_failure:
        return _error_response(result)
    return jsonify(result.data)


@admin_bp.route('/clients/<int:client_id>/hypotheses', methods=['POST'])
def record_hypothesis(client_id):
    data = _json_body()
    result = current_app.services.get('outcome_tracker').record_hypothesis(
        client_id,
        page_type=data.get('page_type'),
        hypothesis=data.get('hypothesis'),
        content=data.get('content'),
        iteration_notes=data.get('iteration_notes'),
        created_by=data.get('created_by') or 'admin'
    )
    if result.is_failure:
        return _error_response(result)
    return jsonify(result.data.to_dict()), 201


@admin_bp.route('/clients/<int:client_id>/pages/<page_type>/history', methods=['GET'])
def page_history(client_id, page_type):
    result = current_app.services.get('outcome_tracker').get_history(client_id, page_type)
    if result.is_failure:
        return _error_response(result)
    return jsonify({'versions': [version.to_dict() for version in result.data]})


# --- Journey outcomes ---

@admin_bp.route('/clients/<int:client_id>/outcome', methods=['POST'])
def mark_outcome(client_id):
    data = _json_body()
    result = current_app.services.get('outcome_tracker').mark_outcome(
        client_id, data.get('outcome'), notes=data.get('notes')
    )
    if result.is_failure:
        return _error_response(result)
    return jsonify(result.data.to_dict())


@admin_bp.route('/clients/<int:client_id>/outcome/override', methods=['POST'])
def override_outcome(client_id):
    data = _json_body()
    result = current_app.services.get('outcome_tracker').override_outcome(
        client_id,
        data.get('outcome'),
        admin_id=data.get('admin_id'),
        reason=data.get('reason'),
        notes=data.get('notes')
    )
    if result.is_failure:
        return _error_response(result)

    security_logger.log_admin_override('client_outcome', client_id, data.get('admin_id'), data.get('reason'))
    return jsonify(result.data.to_dict())


@admin_bp.route('/clients/outcomes/bulk', methods=['POST'])
def mark_outcomes_bulk():
    data = _json_body()
    client_ids = data.get('client_ids')
    if not isinstance(client_ids, list) or not client_ids:
        return _validation_error("client_ids must be a non-empty list")
    if not all(isinstance(client_id, int) for client_id in client_ids):
        return _validation_error("client_ids must contain integers")

    result = current_app.services.get('outcome_tracker').mark_outcomes_bulk(
        client_ids, data.get('outcome'), notes=data.get('notes')
    )
    if result.is_failure:
        return _error_response(result)
    return jsonify({'results': result.data, **result.metadata})


@admin_bp.route('/clients/<int:client_id>/outcome/audit', methods=['GET'])
def outcome_audit(client_id):
    result = current_app.services.get('outcome_tracker').get_outcome_audit(client_id)
    return jsonify({'audit': [entry.to_dict() for entry in result.data]})


@admin_bp.route('/versions/<int:version_id>/outcome', methods=['POST'])
def mark_version_outcome(version_id):
    data = _json_body()
    result = current_app.services.get('outcome_tracker').mark_version_outcome(
        version_id,
        data.get('outcome'),
        notes=data.get('notes'),
        recorded_by=data.get('recorded_by') or 'admin'
    )
    if result.is_failure:
        return _error_response(result)
    return jsonify(result.data.to_dict())


# --- Payments and correlations ---

@admin_bp.route('/clients/<int:client_id>/payment-sessions', methods=['POST'])
def create_payment_session(client_id):
    data = _json_body()
    result = current_app.services.get('payment_session').create_payment_session(
        client_id,
        amount=data.get('amount'),
        currency=data.get('currency') or 'usd'
    )
    if result.is_failure:
        return _error_response(result)
    return jsonify(result.data), 201


@admin_bp.route('/clients/<int:client_id>/correlations', methods=['GET'])
def client_correlations(client_id):
    limit = request.args.get('limit', 100, type=int)
    result = current_app.services.get('correlation_engine').get_correlation_history(client_id, limit=limit)
    if result.is_failure:
        return _error_response(result)
    return jsonify({'correlations': [correlation.to_dict() for correlation in result.data]})


@admin_bp.route('/correlations/<int:correlation_id>/override', methods=['POST'])
def override_correlation(correlation_id):
    data = _json_body()
    result = current_app.services.get('correlation_engine').override_correlation(
        correlation_id,
        data.get('outcome'),
        admin_id=data.get('admin_id'),
        reason=data.get('reason')
    )
    if result.is_failure:
        return _error_response(result)

    security_logger.log_admin_override('correlation', correlation_id, data.get('admin_id'), data.get('reason'))
    return jsonify(result.data.to_dict())


@admin_bp.route('/correlations/<int:correlation_id>/review', methods=['GET'])
def correlation_review(correlation_id):
    result = current_app.services.get('correlation_engine').get_correlation_review(correlation_id)
    if result.is_failure:
        return _error_response(result)
    return jsonify(result.data)


# --- Dashboards ---

@admin_bp.route('/dashboard/metrics', methods=['GET'])
def dashboard_metrics():
    period = request.args.get('period', 'month')
    result = current_app.services.get('dashboard').get_dashboard_metrics(period=period)
    if result.is_failure:
        return _error_response(result)
    return jsonify(result.data)


@admin_bp.route('/dashboard/patterns', methods=['GET'])
def dashboard_patterns():
    min_sample = request.args.get('min_sample', 1, type=int)
    result = current_app.services.get('dashboard').get_pattern_confidence_list(min_sample=min_sample)
    if result.is_failure:
        return _error_response(result)
    return jsonify({'patterns': result.data})


# --- Webhook failures ---

@admin_bp.route('/webhooks/failures', methods=['GET'])
def webhook_failures():
    limit = request.args.get('limit', 20, type=int)
    result = current_app.services.get('dashboard').get_recent_webhook_failures(limit=limit)
    if result.is_failure:
        return _error_response(result)
    return jsonify({'failures': result.data})


@admin_bp.route('/webhooks/failures/<int:failed_webhook_id>/replay', methods=['POST'])
def replay_failed_webhook(failed_webhook_id):
    result = current_app.services.get('webhook_error_recovery').manual_replay(failed_webhook_id)
    if result.is_failure:
        return _error_response(result)
    return jsonify(result.data)
