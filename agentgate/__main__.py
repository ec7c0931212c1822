"""Allow `python -m agentgate`."""
import sys

from .cli import main

sys.exit(main())
