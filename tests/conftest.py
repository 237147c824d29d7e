import sys
import os

# Add backend/ to path so tests can import backend modules directly
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

# Add scripts/ to path so tests can import script modules directly
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))

# The server loads its catalog at import time; point it at the bundled sample.
SAMPLE_CATALOG = os.path.abspath(
    os.path.join(os.path.dirname(__file__), "..", "data", "ontario_courses.json")
)
os.environ["DATA_PATH"] = SAMPLE_CATALOG
os.environ.pop("OR_HEURISTIC", None)
