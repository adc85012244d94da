#!/usr/bin/env python3
# backend/run.py
"""
Development API server with autoreload.

Uses the local SQLite file store unless DATABASE_URL says otherwise.
"""
import os
from pathlib import Path
import sys

backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)
os.environ.setdefault("ENVIRONMENT", "development")

import uvicorn  # noqa: E402

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    print(f"🚀 Salon booking engine on http://localhost:{port} (docs at /docs)")
    uvicorn.run("salon_engine.main:app", host="0.0.0.0", port=port, reload=True, log_level="info")
