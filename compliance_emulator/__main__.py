import sys

from compliance_emulator.cli import main

sys.exit(main())
