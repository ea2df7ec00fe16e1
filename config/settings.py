import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


SERVICE_NAME = os.getenv('SERVICE_NAME', 'blindrop')
PUBLIC_HOST = os.getenv('PUBLIC_HOST', 'http://localhost:8000').rstrip('/')

DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite://db.sqlite3')

# object body storage: local | db | s3
STORAGE_BACKEND = os.getenv('STORAGE_BACKEND', 'local')
LOCAL_STORAGE_PATH = os.getenv('LOCAL_STORAGE_PATH', os.path.join(os.getcwd(), '.storage'))

S3_ENDPOINT = os.getenv('S3_ENDPOINT', '')
S3_BUCKET = os.getenv('S3_BUCKET', '')
S3_ACCESS_KEY = os.getenv('S3_ACCESS_KEY', '')
S3_SECRET_KEY = os.getenv('S3_SECRET_KEY', '')
S3_REGION = os.getenv('S3_REGION') or None

# upload limits
MAX_BLOB_SIZE = int(os.getenv('MAX_BLOB_SIZE', str(25 * 1024 * 1024)))
DEFAULT_TTL_HOURS = int(os.getenv('DEFAULT_TTL_HOURS', '24'))
MAX_TTL_HOURS = int(os.getenv('MAX_TTL_HOURS', '168'))
ID_MAX_ATTEMPTS = int(os.getenv('ID_MAX_ATTEMPTS', '3'))

# rate limiting: db | memory
RATE_LIMIT_BACKEND = os.getenv('RATE_LIMIT_BACKEND', 'db')
UPLOAD_RATE_LIMIT = int(os.getenv('UPLOAD_RATE_LIMIT', '50'))
UPLOAD_RATE_WINDOW = int(os.getenv('UPLOAD_RATE_WINDOW', '3600'))
READ_RATE_LIMIT = int(os.getenv('READ_RATE_LIMIT', '50'))
READ_RATE_WINDOW = int(os.getenv('READ_RATE_WINDOW', '60'))
# peers whose CF-Connecting-IP / X-Forwarded-For headers are believed, e.g. "10.0.0.1,10.0.0.2"
TRUSTED_PROXIES = [h.strip() for h in os.getenv('TRUSTED_PROXIES', '').split(',') if h.strip()]

# payments (placeholder gate)
PAYMENT_CURRENCY = os.getenv('PAYMENT_CURRENCY', 'USD')
PAYMENT_METHODS = [m.strip() for m in os.getenv('PAYMENT_METHODS', 'lightning,stripe').split(',') if m.strip()]

# background jobs
SCHEDULER_ENABLED = _env_bool('SCHEDULER_ENABLED', True)
RECONCILE_INTERVAL_SECS = int(os.getenv('RECONCILE_INTERVAL_SECS', '86400'))
RECONCILE_PAGE_SIZE = int(os.getenv('RECONCILE_PAGE_SIZE', '500'))
# max TTL (7 days) plus one day of margin for objects without side-carried expiry
LEGACY_MAX_AGE_SECS = int(os.getenv('LEGACY_MAX_AGE_SECS', str(8 * 24 * 3600)))
EVICTION_INTERVAL_SECS = int(os.getenv('EVICTION_INTERVAL_SECS', '60'))

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
