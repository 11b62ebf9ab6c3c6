import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    # Browser origins allowed to open a socket (comma separated)
    CORS_ORIGINS = [o.strip() for o in os.environ.get(
        'CORS_ORIGINS', 'http://localhost:5173,http://127.0.0.1:5173'
    ).split(',') if o.strip()]
    # Minimum roster size before the creator may start
    MIN_PLAYERS = int(os.environ.get('MIN_PLAYERS', '1'))
    # Seconds a finished room stays around so clients can read the scoreboard
    GAME_OVER_CLEANUP_SEC = int(os.environ.get('GAME_OVER_CLEANUP_SEC', '30'))
    # Seconds a player may stay offline before their turn is skipped. 0 disables.
    OFFLINE_SKIP_SEC = int(os.environ.get('OFFLINE_SKIP_SEC', '60'))
    OFFLINE_SWEEP_INTERVAL_SEC = int(os.environ.get('OFFLINE_SWEEP_INTERVAL_SEC', '5'))
    # Optional fixed seed for dice and turn order (debugging only)
    DICE_SEED = os.environ.get('DICE_SEED')
