"""
WSGI entry point for gunicorn:

    gunicorn wsgi:app

Background jobs (Phase 1, Phase 2, qualification) run in worker.py.
"""
from app import create_app

app = create_app()

if __name__ == '__main__':
    import os
    app.run(host='0.0.0.0', port=int(os.getenv('PORT', 8080)))
