# bidroom_flask_app.py

import os
import logging
from flask import Flask, jsonify, send_file, send_from_directory
from flask_socketio import SocketIO, emit
from flask import request as flask_request # Alias for clarity

from bidroom_catalog import load_setup, CatalogError
from bidroom_closer import AuctionCloser
from bidroom_config import load_config, configure_logging, ensure_directories
from bidroom_engine import AuctionEngine, AuctionError
from bidroom_results import results_as_bytes
from bidroom_storage import AuctionStore, AuditLog

logger = logging.getLogger(__name__)

RESULTS_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def resolve_identity(req):
    """Network key of the caller: ?ip= override (local testing), then X-Forwarded-For, then the socket address."""
    forced = (req.args.get("ip") or "").strip()
    if forced:
        return forced
    forwarded = req.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    raw = req.remote_addr or "0.0.0.0"
    return raw.replace("::ffff:", "")


def _field(data, *names, default=None):
    for name in names:
        if name in data:
            return data[name]
    return default


def create_flask_app(engine, public_dir=None, identity_resolver=resolve_identity):
    if public_dir and not os.path.isdir(public_dir):
        logger.warning("Public folder not found at %s", public_dir)
        public_dir = None

    flask_app = Flask(__name__, static_folder=public_dir, static_url_path="" if public_dir else None)
    flask_app.config['SECRET_KEY'] = os.urandom(24)

    socketio = SocketIO(flask_app,
                    async_mode='threading',
                    cors_allowed_origins="*",
                    logger=False,         # Turn on for debugging
                    engineio_logger=False)# Turn on for debugging

    # Every accepted mutation reaches every connected client
    def fan_out(event, payload):
        socketio.emit(event, payload)
    engine.add_listener(fan_out)

    # --- Routes ---
    @flask_app.route('/')
    def index():
        if public_dir and os.path.exists(os.path.join(public_dir, "index.html")):
            return send_from_directory(public_dir, "index.html")
        return f"Bidroom live auction server ({engine.auction_name}). State: /api/state, results: /api/results.xlsx"

    @flask_app.route('/api/state')
    def api_state():
        return jsonify(engine.state_view())

    @flask_app.route('/api/results.xlsx')
    def api_results():
        return send_file(results_as_bytes(engine), mimetype=RESULTS_MIMETYPE,
                         as_attachment=True, download_name="bidroom_results.xlsx")

    @flask_app.route('/healthz')
    def healthz():
        return jsonify({"status": "degraded" if engine.degraded else "ok"})

    # --- SocketIO Event Handlers ---
    @socketio.on('connect')
    def handle_connect(auth=None):
        identity_key = identity_resolver(flask_request)
        logger.info("Client connected: %s (%s)", flask_request.sid, identity_key)
        emit('hello', engine.hello(identity_key))
        emit('state', engine.state_view())

    @socketio.on('disconnect')
    def handle_disconnect(*args):
        logger.info("Client disconnected: %s", flask_request.sid)

    def handle_intent(description, action):
        try:
            return action()
        except AuctionError as e:
            logger.debug("%s rejected for %s: %s (%s)", description, flask_request.sid, e, e.code)
            emit('error-msg', str(e))
        except Exception:
            logger.exception("Error processing %s from %s", description, flask_request.sid)
            emit('error-msg', f"Could not process {description}. Please try again.")
        return None

    @socketio.on('bid')
    def handle_bid(data=None):
        if not isinstance(data, dict):
            emit('error-msg', "Malformed bid.")
            return
        identity_key = identity_resolver(flask_request)
        result = handle_intent("bid", lambda: engine.submit_bid(
            _field(data, "item_id", "itemId", "playerId"), identity_key, _field(data, "amount")))
        if result:
            emit('bid:ok', {
                "item_id": result.item["id"],
                "item_name": result.item["name"],
                "amount": result.item["current_bid"],
                "your_remaining": result.remaining,
            })

    @socketio.on('admin:setTimes')
    def handle_set_times(data=None):
        data = data if isinstance(data, dict) else {}
        identity_key = identity_resolver(flask_request)
        settings = handle_intent("admin:setTimes", lambda: engine.set_global_times(
            identity_key,
            _field(data, "start_at_iso", "startAtISO"),
            _field(data, "end_at_iso", "endAtISO"),
            _field(data, "extend_on_bid_seconds", "extendOnBidSeconds", default=0),
        ))
        if settings is not None:
            emit('admin:ok', {"action": "setTimes", "settings": settings})

    @socketio.on('admin:setPlayerTimes')
    def handle_set_player_times(data=None):
        data = data if isinstance(data, dict) else {}
        identity_key = identity_resolver(flask_request)
        item = handle_intent("admin:setPlayerTimes", lambda: engine.set_item_times(
            identity_key,
            _field(data, "item_id", "itemId", "playerId"),
            _field(data, "end_at_iso", "endAtISO"),
            _field(data, "extend_on_bid_seconds", "extendOnBidSeconds"),
        ))
        if item is not None:
            emit('admin:ok', {"action": "setPlayerTimes", "item": item})

    return flask_app, socketio


def build_engine(config):
    setup = load_setup(config.setup_file)
    logger.info("Loaded %d user(s) and %d player(s) from %s", len(setup.registry), len(setup.catalog), config.setup_file)
    store = AuctionStore(config.data_dir)
    audit_log = AuditLog(config.log_dir)
    return AuctionEngine.from_setup(setup, store=store, audit_log=audit_log)


def main(argv=None):
    config = load_config(argv)
    configure_logging(config.log_level)
    ensure_directories(config)
    try:
        engine = build_engine(config)
    except CatalogError as e:
        logger.error("Cannot start auction: %s", e)
        raise SystemExit(1)

    flask_app, socketio = create_flask_app(engine, public_dir=config.public_dir)
    closer = AuctionCloser(engine, tick_seconds=config.tick_seconds)
    closer.start()
    logger.info("Live auction '%s' on http://localhost:%s", engine.auction_name, config.port)
    try:
        # use_reloader=False: the closer thread must not be started twice
        socketio.run(flask_app, host=config.host, port=config.port, debug=False,
                     use_reloader=False, allow_unsafe_werkzeug=True)
    finally:
        closer.stop(timeout=5)
        logger.info("Bidroom server has stopped.")


if __name__ == "__main__":
    main()
