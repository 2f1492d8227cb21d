"""Entry point: python -m lopen_memory"""

import sys

from lopen_memory.cli import main

sys.exit(main())
