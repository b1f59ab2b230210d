import sys

from rethink_pull.cli import main

sys.exit(main())
