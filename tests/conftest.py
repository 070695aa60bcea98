import sys
from pathlib import Path

# Packages live at the repo root (config, network, extraction, engine, ...).
ROOT = str(Path(__file__).resolve().parents[1])
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
