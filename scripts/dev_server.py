#!/usr/bin/env python3
"""
开发服务器启动脚本

使用方式:
    python scripts/dev_server.py            # stdio 传输
    python scripts/dev_server.py --sse      # HTTP/SSE 传输
"""
import argparse
import sys
from pathlib import Path

# 添加项目根目录到Python路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


def parse_args():
    parser = argparse.ArgumentParser(description="nad.fun MCP Server - Development Mode")
    parser.add_argument("--sse", action="store_true", help="serve MCP over HTTP/SSE instead of stdio")
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()

    # stdio 模式下 stdout 是协议通道，提示信息一律写 stderr
    print("=" * 60, file=sys.stderr)
    print(f"nad.fun MCP Server - Development Mode ({'sse' if args.sse else 'stdio'})", file=sys.stderr)
    print("=" * 60, file=sys.stderr)

    if args.sse:
        from src.server.http_app import main
    else:
        from src.server.app import main

    try:
        main()
    except KeyboardInterrupt:
        print("\nServer stopped by user", file=sys.stderr)
