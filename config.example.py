# config.example.py

"""
Documentation-only module (safe to commit).

Runtime configuration comes from environment variables (optionally via a local .env file).
Broker secrets do NOT go here or in .env: they live in the accounts file
(FOLIO_ACCOUNTS_PATH), which is created with 0600 permissions on first run.
"""

ENV_VARS = {
    # App / logging
    "FOLIO_APP_NAME": "App display name (default: folio-sync).",
    "FOLIO_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Paths (gitignored)
    "FOLIO_DATA_DIR": "Local data directory (default: .local/folio).",
    "FOLIO_DB_PATH": "Shared SQLite path (default: <data_dir>/folio.sqlite3).",
    "FOLIO_DB_BUSY_TIMEOUT_SECONDS": "SQLite busy timeout per connection (default: 5).",
    "FOLIO_ACCOUNTS_PATH": "Broker accounts YAML (default: <data_dir>/accounts.yaml).",
    "FOLIO_JOURNAL_PATH": "Ledger journal receiving fetched trades (default: <data_dir>/main.ledger).",
    # Broker
    "FOLIO_BROKER_WEB_URL": "Login host (default: https://kite.zerodha.com).",
    "FOLIO_BROKER_API_URL": "REST API host (default: https://api.kite.trade).",
    "FOLIO_HTTP_TIMEOUT_SECONDS": "Timeout for every broker HTTP call (default: 30).",
    "FOLIO_LOGIN_EMULATION": "Mint request tokens by replaying the web login (true/false, default: true).",
    "FOLIO_TOKEN_MAX_ATTEMPTS": "Failed login/exchange attempts before the manual fallback (default: 3).",
    # Schedules (cron, local time)
    "FOLIO_TRADES_SCHEDULE": "Daily Trades Fetch (default: 0 16 * * *).",
    "FOLIO_PRICES_SCHEDULE": "Daily Price Update (default: 0 18 * * *).",
    "FOLIO_PRICE_SYNC_STEPS": (
        "Comma separated 'module:function' price sync callables; the first one is required "
        "(default: empty, the task is a no-op)."
    ),
}
