import os
import sys
from pathlib import Path

for _key in [key for key in os.environ if key.startswith("HSM_VALIDATOR_")]:
    os.environ.pop(_key)

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))
