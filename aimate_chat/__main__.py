import sys

from aimate_chat.cli import main

sys.exit(main())
