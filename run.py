"""Local development entry point.

Usage:
    python run.py

Requests must carry the identity header (default X-User-Id) that the
upstream identity provider would normally set. `flask seed-demo` prints
a usable value.
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from trackboard import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5001)
