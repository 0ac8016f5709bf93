"""
允许通过 python -m scene_studio 运行
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
