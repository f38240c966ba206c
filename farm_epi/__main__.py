"""Allow `python -m farm_epi`."""

import sys

from farm_epi.cli import main

sys.exit(main())
