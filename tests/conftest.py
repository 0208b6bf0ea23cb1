from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Importing the package builds a boto3 session; keep it off real config.
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("STORE_BACKEND", "memory")
