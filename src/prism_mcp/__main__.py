import sys

from prism_mcp.cli import main

sys.exit(main())
