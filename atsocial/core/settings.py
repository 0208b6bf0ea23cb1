from __future__ import annotations

import os
from dataclasses import dataclass

@dataclass(frozen=True)
class Settings:
    # AWS
    aws_region: str = os.environ.get("AWS_REGION", "us-east-1")

    # DynamoDB single table
    sns_table_name: str = os.environ.get("SNS_TABLE_NAME", "sns")
    # "dynamodb" or "memory"; chosen once at startup
    store_backend: str = os.environ.get("STORE_BACKEND", "dynamodb").lower()

    # Pagination / batching
    default_page_size: int = int(os.environ.get("DEFAULT_PAGE_SIZE", "20"))
    max_page_size: int = int(os.environ.get("MAX_PAGE_SIZE", "50"))
    batch_delete_size: int = int(os.environ.get("BATCH_DELETE_SIZE", "25"))

    # AT Protocol records
    record_collection: str = os.environ.get("RECORD_COLLECTION", "app.bsky.feed.post")

    # KMS (provider secret recovery)
    kms_key_id: str = os.environ.get("KMS_KEY_ID", "")

    # PDS (external account deletion)
    pds_base_url: str = os.environ.get("PDS_BASE_URL", "").rstrip("/")
    pds_timeout_seconds: int = int(os.environ.get("PDS_TIMEOUT_SECONDS", "10"))

    log_level: str = os.environ.get("LOG_LEVEL", "INFO").upper()
    metrics_enabled: bool = os.environ.get("METRICS_ENABLED", "1") not in ("0", "false", "False")


S = Settings()
