"""
Pytest configuration and fixtures for modsbot tests.
"""

import os
import sys
import tempfile
from pathlib import Path

# Keep test runs from writing session logs into the repository
os.environ.setdefault("MODSBOT_LOG_DIR", tempfile.mkdtemp(prefix="modsbot-logs-"))

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))
