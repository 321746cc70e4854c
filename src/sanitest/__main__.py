import sys

from sanitest.cli import main

sys.exit(main())
