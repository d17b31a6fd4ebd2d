# routes/queue.py
"""
Digging queue endpoints: up-next list, export, enqueue, removal, played/next, stats
"""

from flask import Blueprint, Response, current_app, jsonify, request
import json
import logging

from queue_errors import EntryAlreadyPlayedError, EntryNotFoundError, InvalidEntryError

logger = logging.getLogger(__name__)
queue_bp = Blueprint('queue', __name__)

EXPORT_FILENAME = 'digqueue-export.json'


def _service():
    return current_app.extensions['queue_service']


@queue_bp.route('/queue/up-next', methods=['GET'])
def get_up_next():
    """
    Ranked "up next" list

    Resolves entries due for a catalog lookup, then returns the top of the
    ranking. Transport errors hit while resolving are reported under
    `errors`; the ranked page is returned either way.

    Query Parameters:
        limit: Page size (1-100, default 24)

    Returns:
        JSON with items, total, playable, pending and errors
    """
    try:
        page = _service().up_next(request.args.get('limit'))
        return jsonify(page.to_dict())
    except Exception as e:
        logger.error(f"Error building up-next list: {e}", exc_info=True)
        return jsonify({
            'error': 'Internal server error',
            'detail': str(e)
        }), 500


@queue_bp.route('/queue/export', methods=['GET'])
def export_queue():
    """Full queue state as a downloadable JSON file"""
    try:
        rows = _service().export_all()
    except Exception as e:
        logger.error(f"Error exporting queue: {e}", exc_info=True)
        return jsonify({
            'error': 'Internal server error',
            'detail': str(e)
        }), 500

    logger.info(f"Exporting {len(rows)} queue entries")
    return Response(
        json.dumps(rows, indent=2),
        mimetype='application/json',
        headers={'Content-Disposition': f'attachment; filename={EXPORT_FILENAME}'}
    )


@queue_bp.route('/queue/entries', methods=['POST'])
def add_entry():
    """
    Add an item to the digging queue

    Request Body:
        artist, title, catalog_text (artist or title required)
        queueMode: "next" to play the item before everything else queued

    Returns:
        201 with the new entry, 200 when it was already queued
    """
    data = request.get_json(silent=True) or {}
    play_next = data.get('queueMode') == 'next' or data.get('play_next') is True

    try:
        entry, created = _service().add_entry(
            artist=data.get('artist'),
            title=data.get('title'),
            catalog_text=data.get('catalog_text') or data.get('catalogText'),
            play_next=play_next,
        )
    except InvalidEntryError as e:
        return jsonify({'error': str(e), 'code': e.code}), 400

    return jsonify({'entry': entry.to_dict(), 'created': created}), 201 if created else 200


@queue_bp.route('/queue/next', methods=['GET', 'POST'])
def next_item():
    """
    Next playable item

    GET reads `mode` from the query string. POST accepts
    {"currentId", "action": "played", "mode"} and marks the current entry
    played before picking the next one.

    Returns:
        JSON with the next item (null when nothing is playable)
    """
    if request.method == 'POST':
        data = request.get_json(silent=True) or {}
        mode = data.get('mode') or 'hybrid'
        current_id = data.get('currentId') if data.get('action', 'played') == 'played' else None
    else:
        mode = request.args.get('mode', 'hybrid')
        current_id = None

    item = _service().next_item(mode=mode, current_id=current_id)
    return jsonify({
        'mode': mode,
        'item': item.to_dict() if item else None
    })


@queue_bp.route('/queue/entries/<entry_id>/played', methods=['POST'])
def mark_entry_played(entry_id):
    """Mark one entry as played"""
    try:
        entry = _service().mark_played(entry_id)
    except EntryNotFoundError as e:
        return jsonify({'error': str(e), 'code': e.code}), 404
    return jsonify({'entry': entry.to_dict()})


@queue_bp.route('/queue/stats', methods=['GET'])
def get_stats():
    """Entry counts by state"""
    return jsonify(_service().get_statistics())


@queue_bp.route('/queue/entries/<entry_id>', methods=['DELETE'])
def remove_entry(entry_id):
    """
    Remove an unplayed entry from the queue

    Returns:
        200 with the removed entry, 404 for unknown ids, 409 for played entries
    """
    try:
        entry = _service().remove_entry(entry_id)
    except EntryNotFoundError as e:
        return jsonify({'error': str(e), 'code': e.code}), 404
    except EntryAlreadyPlayedError as e:
        return jsonify({'error': str(e), 'code': e.code}), 409
    return jsonify({'entry': entry.to_dict(), 'removed': True})
