# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Use:
- .env (local, gitignored)
- config_local.py (local safe overrides, gitignored)

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "CAFE_APP_NAME": "App display name (default: cafe-portal).",
    "CAFE_LOG_LEVEL": "Console logging level (default: INFO).",
    # Connectors
    "CAFE_CONSOLE_ENABLED": "Run the operator console (true/false, default: true).",
    # Paths (gitignored)
    "CAFE_DATA_DIR": "Local data directory (default: .local/cafe_portal).",
    "CAFE_TASKS_DB_PATH": "TaskStore SQLite path (default: <data_dir>/tasks.sqlite3).",
    "CAFE_LEDGER_DB_PATH": "Ledger SQLite path (default: <data_dir>/ledger.sqlite3).",
    "CAFE_SESSIONS_DB_PATH": (
        "Sessions + verification codes SQLite path (default: <data_dir>/sessions.sqlite3)."
    ),
    # Sessions / login
    "CAFE_SESSION_TTL_SECONDS": "Session lifetime (default: 86400).",
    "CAFE_OTP_TTL_SECONDS": "Login OTP lifetime (default: 300).",
    "CAFE_OTP_MAX_ATTEMPTS": "Wrong guesses allowed before a login OTP is burned (default: 5).",
    "CAFE_ADMIN_USERNAMES": "Comma/space separated usernames that log in as admins (default: admin).",
    # Background work
    "CAFE_SWEEP_INTERVAL_SECONDS": "Expiry sweeper interval (default: 60).",
    "CAFE_DELIVERY_TIMEOUT_SECONDS": "Per-subscriber notification timeout (default: 5).",
    "CAFE_WEBHOOK_TIMEOUT_SECONDS": "HTTP timeout for webhook sinks (default: 5).",
}
