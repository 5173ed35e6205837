import os
import sys
from pathlib import Path

os.environ.setdefault("MAX_CONCURRENT", "2")
os.environ.setdefault("POLLING_INTERVAL_MS", "5000")
os.environ.setdefault("XRPL_SERVER", "wss://s.altnet.rippletest.net:51233")

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))
