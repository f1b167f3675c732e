"""Allow ``python -m store_backup``."""

import sys

from store_backup.cli import main

sys.exit(main())
