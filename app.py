from flask import Flask, request, jsonify
import asyncio
import logging
from threading import Thread, Lock
from typing import Optional

from ble_utils import BleakCentral
from config import Settings, setup_logging
from coordinator import TrackingSession
from notification_handler import MAX_LOG_ENTRIES

_LOGGER = logging.getLogger(__name__)

app = Flask(__name__)

# Tracking session, created on the event loop thread
session: Optional[TrackingSession] = None
settings: Optional[Settings] = None

# Event loop for async operations
loop = None
loop_thread = None
_init_lock = Lock()


def start_event_loop():
    """Start the asyncio event loop in a separate thread"""
    asyncio.set_event_loop(loop)
    loop.run_forever()


def run_async(coro):
    """Run an async coroutine from sync context"""
    if loop is None:
        raise RuntimeError("Event loop not started")
    future = asyncio.run_coroutine_threadsafe(coro, loop)
    return future.result(timeout=30)  # 30 second timeout


async def _invoke(func, *args):
    return func(*args)


def call_on_loop(func, *args):
    """Run a plain function on the event loop thread and return its result"""
    return run_async(_invoke(func, *args))


def get_session() -> TrackingSession:
    """Start the event loop and build the tracking session on first use"""
    global loop, loop_thread, session, settings
    with _init_lock:
        if session is not None:
            return session
        if settings is None:
            settings = Settings.from_environment()
        if loop_thread is None:
            loop = asyncio.new_event_loop()
            loop_thread = Thread(target=start_event_loop, daemon=True)
            loop_thread.start()

        async def build():
            return TrackingSession(settings, BleakCentral())

        session = run_async(build())
        _LOGGER.info("Tracking session ready for %s", settings.device_name)
        return session


@app.route('/')
def home():
    return jsonify({
        "status": "Tracker API is running",
        "endpoints": {
            "session": ["/session/start", "/session/stop", "/status"],
            "ble": ["/ble/send", "/ble/control"],
            "logs": ["/logs"]
        }
    })


@app.route('/status', methods=['GET'])
def status():
    """Aggregated GPS, upload and BLE status"""
    try:
        tracker = get_session()
        return jsonify(call_on_loop(tracker.status))
    except Exception as e:
        _LOGGER.exception("Status request failed")
        return jsonify({"error": str(e)}), 500


@app.route('/session/start', methods=['POST'])
def session_start():
    """Start GPS tracking, uploads and BLE scanning"""
    try:
        tracker = get_session()
        if tracker.is_tracking:
            return jsonify({"error": "Session already running"}), 409
        call_on_loop(tracker.start_tracking)
        return jsonify({"status": "started", "session_id": tracker.settings.session_id})
    except Exception as e:
        _LOGGER.exception("Session start failed")
        return jsonify({"error": str(e)}), 500


@app.route('/session/stop', methods=['POST'])
def session_stop():
    """Stop tracking and disconnect the peripheral"""
    try:
        tracker = get_session()
        call_on_loop(tracker.stop_tracking)
        return jsonify({"status": "stopped", "uploads": tracker.scheduler.upload_count})
    except Exception as e:
        _LOGGER.exception("Session stop failed")
        return jsonify({"error": str(e)}), 500


@app.route('/ble/send', methods=['POST'])
def ble_send():
    """Send a text message to the peripheral's write characteristic"""
    try:
        data = request.get_json(silent=True) or {}
        message = data.get('message')
        if not message:
            return jsonify({"error": "message required"}), 400

        tracker = get_session()
        if not call_on_loop(tracker.send_message, message):
            return jsonify({"error": "Not connected or no write characteristic"}), 409
        return jsonify({"status": "sent", "message": message})
    except Exception as e:
        _LOGGER.exception("BLE send failed")
        return jsonify({"error": str(e)}), 500


@app.route('/ble/control', methods=['POST'])
def ble_control():
    """Send a control command (default: sleep)"""
    try:
        data = request.get_json(silent=True) or {}
        command = data.get('command', 'sleep')

        tracker = get_session()
        if command == 'sleep':
            sent = call_on_loop(tracker.send_sleep)
        else:
            sent = call_on_loop(tracker.peripheral.send_control, command)
        if not sent:
            return jsonify({"error": "Not connected or no control characteristic"}), 409
        return jsonify({"status": "sent", "command": command})
    except Exception as e:
        _LOGGER.exception("BLE control failed")
        return jsonify({"error": str(e)}), 500


@app.route('/logs', methods=['GET', 'DELETE'])
def logs():
    """Recent lifecycle log lines, or clear them"""
    try:
        tracker = get_session()
        if request.method == 'DELETE':
            call_on_loop(tracker.clear_logs)
            return jsonify({"status": "cleared"})

        limit = request.args.get('limit', default=MAX_LOG_ENTRIES, type=int)
        limit = max(0, min(limit, MAX_LOG_ENTRIES))
        entries = call_on_loop(tracker.event_log.recent, limit)
        return jsonify({"logs": entries, "count": len(entries)})
    except Exception as e:
        _LOGGER.exception("Log request failed")
        return jsonify({"error": str(e)}), 500


if __name__ == '__main__':
    settings = Settings.from_environment()
    setup_logging(settings)
    # Run on all interfaces so it's accessible from the local network
    app.run(host='0.0.0.0', port=5000)
