"""
Environment loader.

Reads ``KEY=value`` pairs from a ``.env`` file into the process environment
before settings are parsed. Variables already set in the environment win.
"""

import os
from pathlib import Path
from typing import Union


def load_env(env_file: Union[str, Path] = '.env') -> int:
    """Load environment variables from a .env file, returning how many were set."""
    env_path = Path(env_file)
    if not env_path.exists():
        return 0

    loaded = 0
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith('#') and '=' in line:
                key, value = line.split('=', 1)
                key = key.strip()
                value = value.strip().strip('"').strip("'")
                if key not in os.environ:
                    os.environ[key] = value
                    loaded += 1
    return loaded
