import sys

from cfproxy.cli import main

sys.exit(main())
