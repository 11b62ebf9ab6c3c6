import time
from typing import List, Optional

from qwixx import get_broadcaster, get_registry, socketio
from qwixx.errors import GameError


def _scheduler_disabled(app) -> bool:
    return bool(app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'))


def schedule_room_cleanup(app, session) -> None:
    """Remove a finished room after GAME_OVER_CLEANUP_SEC.

    - One timer per session
    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Only removes the session it was scheduled for, so a reused code is safe
    """
    if session.cleanup_scheduled:
        return
    session.cleanup_scheduled = True
    if _scheduler_disabled(app):
        return

    delay = int(app.config.get('GAME_OVER_CLEANUP_SEC', 30))
    app.logger.info(f"[timer-set] room={session.code} cleanup in {delay}s")

    def _worker(target, wait):
        if wait > 0:
            socketio.sleep(wait)
        app.logger.info(f"[timer-fire] room={target.code}")
        cleanup_room(app, target)

    socketio.start_background_task(_worker, session, delay)


def cleanup_room(app, session) -> bool:
    registry = get_registry(app)
    with session.lock:
        removed = registry.remove(session.code, session)
    if removed:
        get_broadcaster(app).close(session.code)
    return removed


def sweep_rooms(app, grace_sec: float, now: Optional[float] = None) -> List[str]:
    """Apply the offline-player policy to every room.

    Started rooms whose whole roster stayed offline past `grace_sec` are
    removed. Returns the codes of rooms whose state changed.
    """
    registry = get_registry(app)
    broadcaster = get_broadcaster(app)
    changed = []
    for session in registry.sessions():
        if session.is_deserted(grace_sec, now=now):
            app.logger.info(f"[deserted] room={session.code} every player offline for {grace_sec}s")
            cleanup_room(app, session)
            continue
        try:
            if not session.sweep_offline(grace_sec, now=now):
                continue
        except GameError as exc:
            app.logger.warning(f"[sweep-error] room={session.code} {exc.message}")
            continue
        changed.append(session.code)
        broadcaster.publish(session)
        if session.state.game_over:
            schedule_room_cleanup(app, session)
    return changed


def start_offline_sweeper(app) -> None:
    if _scheduler_disabled(app):
        return
    grace = int(app.config.get('OFFLINE_SKIP_SEC', 60))
    if grace <= 0:
        return
    interval = max(1, int(app.config.get('OFFLINE_SWEEP_INTERVAL_SEC', 5)))
    app.logger.info(f"[timer-set] offline sweep every {interval}s grace={grace}s")

    def _worker():
        while True:
            socketio.sleep(interval)
            with app.app_context():
                sweep_rooms(app, grace, now=time.time())

    socketio.start_background_task(_worker)
