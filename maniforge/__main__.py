import sys

from maniforge.cli.main import main

sys.exit(main())
