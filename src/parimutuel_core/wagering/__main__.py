"""Allow running admin commands as: python -m parimutuel_core.wagering <command> ..."""

import sys

from parimutuel_core.wagering.admin import main

sys.exit(main())
