import sys

from dsapi.cli import main

sys.exit(main())
