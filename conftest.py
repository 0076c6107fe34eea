"""Root conftest.py for pytest.

Puts the project root on sys.path so ``client``, ``server``, ``schemas`` and
friends import without an editable install.
"""
import os
import sys

project_root = os.path.dirname(os.path.abspath(__file__))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

# Subprocess imports (tests/test_no_import_cycles.py) need the same root
os.environ.setdefault("PYTHONPATH", project_root)
