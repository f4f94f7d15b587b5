"""closure-bridge 入口点。

支持: python -m closure_bridge
"""

from .app import main

if __name__ == "__main__":
    main()
