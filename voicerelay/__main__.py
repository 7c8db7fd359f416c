import sys

from voicerelay.cli import main

sys.exit(main())
