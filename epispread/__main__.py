import sys

from epispread.cli import main

sys.exit(main())
