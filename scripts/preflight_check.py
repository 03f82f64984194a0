#!/usr/bin/env python3
import os
import sys
import traceback

print("Running preflight import check...")
# Settings read env at import time; make sure nothing below needs a live Redis
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

try:
    import remitdesk.main
    print("Import remitdesk.main: OK")

    import remitdesk.queue.jobs
    print("Import remitdesk.queue.jobs: OK")

    from remitdesk.core.orchestrator import list_tools
    print(f"Tools registered: {', '.join(list_tools())}")
except Exception as e:
    print(f"Preflight check FAILED: {e}")
    traceback.print_exc()
    sys.exit(1)

print("Preflight check passed.")
sys.exit(0)
