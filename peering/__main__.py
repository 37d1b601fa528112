import sys

from peering.cli import main

sys.exit(main())
