"""
Web server for scalelog - the HTTP boundary in front of the practice stores.
"""
import logging
import sqlite3
import threading
import time
from typing import Any, Dict, Optional, Tuple

from flask import Flask, jsonify, request
from flask_socketio import SocketIO
from werkzeug.exceptions import HTTPException

from scalelog.catalog import MAJOR_SCALES, MINOR_SCALES
from scalelog.collection import ScaleCollection
from scalelog.database import PracticeDatabase
from scalelog.exercise import ExerciseKey, InvalidPayload, parse_int, upgrade_legacy_session
from scalelog.ledger import DailyPracticeLedger
from scalelog.sessions import SessionStore
import scalelog.config as config

logger = logging.getLogger(__name__)


def _error(message: str, status: int, **details):
    return jsonify({'error': message, **details}), status


class ScaleLogWebServer:
    """Web server exposing sessions, daily practice and the scale collection, with change notifications via WebSocket."""

    def __init__(self, db: PracticeDatabase, host: str = config.WEB_HOST, port: int = config.WEB_PORT):
        """
        Initialize web server.

        Args:
            db: Open PracticeDatabase shared by the stores
            host: Host to bind to
            port: Port to bind to
        """
        self.db = db
        self.sessions = SessionStore(db)
        self.ledger = DailyPracticeLedger(db)
        self.collection = ScaleCollection(db)
        self.host = host
        self.port = port

        self.app = Flask(__name__)
        self.app.config['SECRET_KEY'] = 'scalelog-secret-key-change-in-production'
        self.app.config['JSON_SORT_KEYS'] = False

        self.socketio = SocketIO(self.app, cors_allowed_origins='*')

        self._setup_error_handlers()
        self._setup_routes()

        self.server_thread: Optional[threading.Thread] = None
        self.running = False

    def _setup_error_handlers(self):
        @self.app.errorhandler(InvalidPayload)
        def invalid_payload(e):
            return _error(str(e), 400)

        @self.app.errorhandler(Exception)
        def internal_error(e):
            if isinstance(e, HTTPException):
                return _error(e.description, e.code)
            logger.error("Unhandled error for %s %s: %s", request.method, request.path, e, exc_info=True)
            return _error('Internal server error', 500)

    @staticmethod
    def _body() -> Dict[str, Any]:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise InvalidPayload('JSON object body required')
        return data

    @staticmethod
    def _exercise_args(require_octaves: bool = True) -> Tuple[str, str, Optional[int]]:
        scale = request.args.get('scale')
        practice_type = request.args.get('practice_type')
        octaves = request.args.get('octaves')
        if not scale or not practice_type or (require_octaves and not octaves):
            raise InvalidPayload('Missing required parameters')
        return scale, practice_type, parse_int(octaves, 'octaves', minimum=1) if require_octaves else None

    def _setup_routes(self):
        """Setup Flask routes."""

        @self.app.route('/api/init')
        def init():
            """Make sure the store is ready and the default scales exist."""
            scales = self.collection.seed_defaults()
            return jsonify({'success': True, 'message': 'Database initialized successfully',
                            'scales': scales})

        @self.app.route('/api/sessions')
        def get_sessions():
            """Session queries selected by the action parameter."""
            action = request.args.get('action', 'recent')
            scale = request.args.get('scale')

            if action == 'recent':
                limit = request.args.get('limit', config.RECENT_SESSIONS_LIMIT, type=int)
                return jsonify(self.sessions.recent(limit))
            if action == 'all':
                return jsonify(self.sessions.all())
            if action in ('forScale', 'lastForScale'):
                if not scale:
                    return _error('Scale parameter required', 400)
                if action == 'forScale':
                    return jsonify(self.sessions.for_scale(scale))
                limit = request.args.get('limit', config.LAST_FOR_SCALE_LIMIT, type=int)
                return jsonify(self.sessions.last_for_scale(scale, limit))
            if action == 'stats':
                return jsonify(self.sessions.stats(request.args.get('date')))
            return _error('Invalid action', 400)

        @self.app.route('/api/sessions', methods=['POST'])
        def post_sessions():
            """Save or clear sessions."""
            data = self._body()
            action = data.get('action')

            if action in ('save', 'saveUnique'):
                session = data.get('session')
                if session is None:
                    return _error('session is required', 400)
                store = self.sessions.insert_unique if action == 'saveUnique' else self.sessions.insert
                saved = store(session)
                if saved is None:
                    return _error('Failed to save session', 500)
                self.notify('sessions_updated', {'session': saved})
                return jsonify(saved)

            if action == 'clear':
                if not self.sessions.clear_all():
                    return _error('Failed to clear sessions', 500)
                self.notify('sessions_updated', {'cleared': True})
                return jsonify({'success': True})

            return _error('Invalid action', 400)

        @self.app.route('/api/sessions/exercise')
        def get_exercise():
            """Exercise-scoped queries."""
            action = request.args.get('action')

            if action == 'bestBPM':
                key = ExerciseKey(*self._exercise_args())
                return jsonify({'best_bpm': self.sessions.best_bpm(key)})
            if action == 'hasBeenPracticed':
                scale, practice_type, _ = self._exercise_args(require_octaves=False)
                return jsonify({'practiced': self.sessions.has_been_practiced(scale, practice_type)})
            if action in ('practicedForScale', 'debug'):
                scale = request.args.get('scale')
                if not scale:
                    return _error('Scale parameter required', 400)
                if action == 'debug':
                    return jsonify({'debug_info': self.sessions.describe_scale(scale)})
                types = sorted(self.sessions.practiced_types_for_scale(scale))
                return jsonify({'practice_types': types})
            return _error('Invalid action', 400)

        @self.app.route('/api/daily-practice')
        def get_daily_practice():
            """Daily total for a date (today if omitted); null if none recorded."""
            return jsonify(self.ledger.get(request.args.get('date')))

        @self.app.route('/api/daily-practice', methods=['POST'])
        def post_daily_practice():
            data = self._body()
            action = data.get('action')

            if action == 'save':
                record = data.get('practice_data')
                if record is None:
                    return _error('practice_data is required', 400)
                if not self.ledger.save(record):
                    return _error('Failed to save daily practice data', 500)
                self.notify('daily_practice_updated', {'date': record.get('date')})
                return jsonify({'success': True})

            if action == 'clear':
                if not self.ledger.clear_all():
                    return _error('Failed to clear daily practice data', 500)
                self.notify('daily_practice_updated', {'cleared': True})
                return jsonify({'success': True})

            return _error('Invalid action', 400)

        @self.app.route('/api/scales')
        def get_scales():
            """The user's scale collection."""
            action = request.args.get('action', 'getCollection')
            if action == 'getCollection':
                return jsonify(self.collection.list())
            if action == 'catalog':
                return jsonify({'major': MAJOR_SCALES, 'minor': MINOR_SCALES})
            return _error('Invalid action', 400)

        @self.app.route('/api/scales', methods=['POST'])
        def post_scales():
            """Manage the scale collection."""
            data = self._body()
            action = data.get('action')

            if action == 'addScale':
                scale = data.get('scale')
                if not isinstance(scale, dict) or not scale.get('name'):
                    return _error('Scale data required', 400)
                added = self.collection.add(scale)
                if added is None:
                    return _error('Scale already exists', 409, name=scale['name'])
                self.notify('scales_updated', {'added': [added]})
                return jsonify(added)

            if action == 'addScales':
                scales = data.get('scales')
                if not isinstance(scales, list):
                    return _error('scales must be a list', 400)
                result = self.collection.add_many(scales)
                if result['added']:
                    self.notify('scales_updated', {'added': result['added']})
                return jsonify(result)

            if action == 'removeScale':
                if data.get('scale_id') is None:
                    return _error('Scale ID required', 400)
                scale_id = parse_int(data.get('scale_id'), 'scale_id')
                if not self.collection.remove(scale_id):
                    return _error('Scale not found', 404)
                self.notify('scales_updated', {'removed': scale_id})
                return jsonify({'success': True})

            if action == 'initializeDefaults':
                return jsonify(self.collection.seed_defaults())

            if action == 'resetToDefaults':
                scales = self.collection.reset_to_defaults()
                self.notify('scales_updated', {'reset': True})
                return jsonify(scales)

            if action == 'clearAll':
                if not self.collection.clear_all():
                    return _error('Failed to clear scales', 500)
                self.notify('scales_updated', {'cleared': True})
                return jsonify({'success': True})

            return _error('Invalid action', 400)

        @self.app.route('/api/database', methods=['POST'])
        def post_database():
            """Clear every collection and reseed the default scales."""
            data = self._body()
            if data.get('action') != 'clearAll':
                return _error('Invalid action', 400)

            try:
                with self.db.transaction() as conn:
                    self.db.clear_all()
                    ScaleCollection.insert_defaults(conn)
            except sqlite3.Error as e:
                logger.error("Error clearing database: %s", e, exc_info=True)
                return _error('Failed to clear database', 500)
            default_scales = self.collection.list()

            self.notify('database_cleared', {})
            return jsonify({'success': True, 'message': 'All database data cleared successfully',
                            'default_scales': default_scales})

        @self.app.route('/api/migrate', methods=['POST'])
        def migrate():
            """Import sessions and daily totals recorded while offline."""
            data = self._body()
            migrated_sessions = 0
            migrated_days = 0

            for raw in data.get('sessions') or []:
                try:
                    session = upgrade_legacy_session(raw, config.MIGRATION_DEFAULT_DURATION)
                    if self.sessions.insert(session):
                        migrated_sessions += 1
                except InvalidPayload as e:
                    logger.warning("Skipping session during migration: %s (%s)", raw, e)

            for raw in data.get('daily_practice') or []:
                try:
                    record = dict(raw)
                    if record.get('total_time_seconds') is None:
                        record['total_time_seconds'] = record.get('time', 0)
                    if self.ledger.merge(record):
                        migrated_days += 1
                except (InvalidPayload, TypeError, ValueError) as e:
                    logger.warning("Skipping daily practice record during migration: %s (%s)", raw, e)

            if migrated_sessions or migrated_days:
                self.notify('sessions_updated', {'migrated': migrated_sessions})

            logger.info("Migrated %d session(s) and %d daily record(s)", migrated_sessions, migrated_days)
            return jsonify({
                'success': True,
                'migrated_sessions': migrated_sessions,
                'migrated_daily_practice': migrated_days,
                'message': f"Successfully migrated {migrated_sessions} sessions and {migrated_days} daily records",
            })

    def notify(self, event: str, payload: Dict[str, Any]):
        """Tell connected clients that stored data changed."""
        self.socketio.emit(event, {**payload, 'timestamp': time.time()})

    def run(self):
        """Run the web server in the foreground."""
        logger.info(f"Starting web server on {self.host}:{self.port}")
        self.socketio.run(self.app, host=self.host, port=self.port,
                          allow_unsafe_werkzeug=True, debug=False)

    def start(self):
        """Start the web server in a background thread."""
        if self.running:
            logger.warning("Web server already running")
            return

        self.running = True
        self.server_thread = threading.Thread(target=self.run, daemon=True)
        self.server_thread.start()
        logger.info("Web server started in background thread")

    def stop(self):
        """Stop the web server."""
        self.running = False
        logger.info("Web server stopped")
