"""
Service-wide constants
"""

SERVICE_NAME = "timeclock-attendance"

# system_state key holding the highest reconciled punch epoch
WATERMARK_STATE_KEY = "attendanceMachine:lastProcessedEpoch"

# Bounds applied to batch_size when it is supplied through the HTTP API
MIN_API_BATCH_SIZE = 100
MAX_API_BATCH_SIZE = 10000

# Mapping upserts re-run reconciliation for this many trailing days of the pair
MAPPING_REPROCESS_DAYS = 2

# Raw event listing page size bounds
RAW_EVENTS_DEFAULT_TAKE = 50
RAW_EVENTS_MAX_TAKE = 200

# Ingestion writes in chunks of this size per transaction
INGEST_CHUNK_SIZE = 500
