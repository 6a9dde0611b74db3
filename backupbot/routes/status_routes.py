"""
Status routes - health check and backup scheduler state.
"""

from flask import Blueprint, current_app, jsonify


bp = Blueprint('status', __name__)


@bp.route('/health', methods=['GET'])
def health():
    """Liveness probe."""
    return jsonify({'status': 'healthy'}), 200


@bp.route('/api/status', methods=['GET'])
def get_status():
    """
    Get backup scheduler status.

    Returns:
        JSON with:
        - source_id: Sanitized instance name
        - scheduler_running: Whether APScheduler is running
        - state: 'idle' or 'running'
        - next_run: ISO timestamp of the pending cycle
        - last_result: Outcome of the last finished cycle
    """
    backup_scheduler = current_app.extensions.get('backup_scheduler')

    if backup_scheduler is None:
        return jsonify({'error': 'Backup scheduler not initialized'}), 503

    return jsonify(backup_scheduler.status())
