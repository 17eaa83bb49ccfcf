"""Allow `python -m scripts` by running the cache warmer."""

import sys

from scripts.warm_cache import main

sys.exit(main())
