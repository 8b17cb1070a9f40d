"""Run the API with uvicorn and auto-reload for local debugging."""

import os
import socket

from dotenv import load_dotenv

load_dotenv()


def is_port_in_use(port):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex(('localhost', port)) == 0


if __name__ == "__main__":
    import sys

    import uvicorn

    from src.api.config import settings

    port = settings.api_port
    if is_port_in_use(port):
        print(f"Port {port} is already in use; stop that process or change API_PORT in .env")
        sys.exit(1)

    project_root = os.path.dirname(os.path.abspath(__file__))
    src_dir = os.path.join(project_root, "src")

    print("=" * 80)
    print(f"Starting server: http://{settings.api_host}:{port}")
    print("=" * 80)

    try:
        uvicorn.run(
            "src.api.main:app",
            host=settings.api_host,
            port=port,
            log_level=os.getenv("UVICORN_LOG_LEVEL", "info"),
            access_log=True,
            reload=True,
            reload_dirs=[src_dir],
        )
    except KeyboardInterrupt:
        print("\nServer stopped")
