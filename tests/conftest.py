"""
Pytest configuration file.

Ensures src/ is on sys.path so that 'import cenw_analysis' works without an install.
"""
import sys
from pathlib import Path

# Add the src directory to sys.path
src_dir = Path(__file__).parent.parent / "src"
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))
