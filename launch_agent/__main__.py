import sys

from launch_agent.cli import main

sys.exit(main())
