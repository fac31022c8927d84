"""
mnemo 包入口点 - 支持 `python -m mnemo` 调用
"""

from mnemo.main import main

if __name__ == "__main__":
    main()
