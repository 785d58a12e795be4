"""Allow running as: python -m explorer_rpc"""

import sys

from explorer_rpc.cli import main


if __name__ == "__main__":
    sys.exit(main())
