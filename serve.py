#!/usr/bin/env python3
"""
Pricey API Server
This script starts the FastAPI backend with uvicorn and stops it on Ctrl+C.
"""

import socket
import subprocess
import sys
import time
from pathlib import Path

from api.config import settings

backend_process = None

BACKEND_DIR = Path(__file__).parent / 'backend'


def check_backend_running():
    """Check if backend is already running"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        return sock.connect_ex(('localhost', settings.api_port)) == 0


def start_backend():
    """Start the FastAPI backend"""
    global backend_process

    print("Starting backend server...")
    command = [
        sys.executable, '-m', 'uvicorn', 'api.main:app',
        '--host', settings.api_host,
        '--port', str(settings.api_port),
    ]
    if settings.api_debug:
        command.append('--reload')

    backend_process = subprocess.Popen(command, cwd=str(BACKEND_DIR))

    # Wait for server to start
    print("Waiting for backend to start...")
    for _ in range(30):
        if check_backend_running():
            print("✅ Backend started successfully!")
            return backend_process
        if backend_process.poll() is not None:
            break
        time.sleep(0.5)

    print("❌ Backend failed to start")
    return None


def stop_backend():
    """Stop the backend process"""
    global backend_process

    if backend_process:
        print("🔄 Stopping backend...")
        backend_process.terminate()
        try:
            # Leave time for the browser engines to close
            backend_process.wait(timeout=20)
        except subprocess.TimeoutExpired:
            backend_process.kill()
        backend_process = None


def main():
    print("=" * 50)
    print("  Pricey - API Server")
    print("=" * 50)
    print()

    if check_backend_running():
        print(f"✅ Backend already running on http://localhost:{settings.api_port}")
        return

    if not start_backend():
        print("\nFailed to start backend. Please check logs.")
        return

    print()
    print("=" * 50)
    print("  Application Ready!")
    print("=" * 50)
    print()
    print(f"  Backend API: http://localhost:{settings.api_port}")
    print(f"  API Docs:    http://localhost:{settings.api_port}/docs")
    print()
    print("  Press Ctrl+C to stop")
    print("=" * 50)

    try:
        while backend_process is not None and backend_process.poll() is None:
            time.sleep(1)
        print("\n❌ Backend exited unexpectedly")
    except KeyboardInterrupt:
        print("\n\nShutting down server...")
        stop_backend()
        print("✅ Server stopped")


if __name__ == '__main__':
    main()
