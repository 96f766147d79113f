"""Run a quick smoke test against the app.

Uses FastAPI's TestClient to hit `/health` and print the response.
"""

import sys
import os

# Ensure backend folder is on sys.path so `studytogether` can be imported
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fastapi.testclient import TestClient
from studytogether.main import app


def run_testclient():
    client = TestClient(app)
    resp = client.get('/health')
    print('STATUS:', resp.status_code)
    print('JSON:', resp.json())


if __name__ == '__main__':
    run_testclient()
