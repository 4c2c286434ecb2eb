import sys

from idasen_control.cli import main

sys.exit(main())
