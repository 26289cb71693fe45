from refresh_engine.models.records import (
    FUNDAMENTAL_FIELDS,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_RUNNING,
    PRICE_FIELDS,
    SCRAPE_FAILED,
    SCRAPE_SUCCESS,
    FetchOutcome,
    FundamentalsSnapshot,
    Instrument,
    JobRecord,
    PersistedPriceRecord,
    Quote,
    RotationWindow,
    Slice,
    UpsertResult,
    as_utc,
    utc_iso,
)

__all__ = [
    "FUNDAMENTAL_FIELDS",
    "JOB_COMPLETED",
    "JOB_FAILED",
    "JOB_RUNNING",
    "PRICE_FIELDS",
    "SCRAPE_FAILED",
    "SCRAPE_SUCCESS",
    "FetchOutcome",
    "FundamentalsSnapshot",
    "Instrument",
    "JobRecord",
    "PersistedPriceRecord",
    "Quote",
    "RotationWindow",
    "Slice",
    "UpsertResult",
    "as_utc",
    "utc_iso",
]
