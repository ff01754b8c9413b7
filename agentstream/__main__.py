import sys

from agentstream.main import main

sys.exit(main())
