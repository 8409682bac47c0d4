import sys

from podcatalog.cli import main

sys.exit(main())
