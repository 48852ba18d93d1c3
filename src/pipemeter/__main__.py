"""Allow ``python -m pipemeter``."""

import sys

from .cli import main

sys.exit(main())
