"""Allow running as: python -m requirements_hub"""

import sys

from requirements_hub.main import main

if __name__ == "__main__":
    sys.exit(main())
