"""
Flask application factory.

Creates and configures the Flask app, registers all blueprints.
"""
import os

from flask import Flask, jsonify, redirect, render_template_string, request, session


LOGIN_PAGE = '''
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Login — Connection Ranker</title>
    <style>
        body { font-family: sans-serif; min-height: 100vh; display: flex; align-items: center;
               justify-content: center; background: #eeece1; margin: 0; }
        .card { background: white; border-radius: 12px; box-shadow: 0 2px 8px rgba(0,0,0,0.06);
                padding: 2.5rem; width: 100%; max-width: 360px; }
        input, button { width: 100%; box-sizing: border-box; border-radius: 8px; padding: 0.6rem; }
        button { background: #005c69; color: white; border: 0; margin-top: 1rem; cursor: pointer; }
    </style>
</head>
<body>
    <div class="card">
        <h1>Connection Ranker</h1>
        {% if error %}<p style="color:#f65c4e;">Wrong password</p>{% endif %}
        <form method="POST" action="/login">
            <input type="password" name="password" autofocus placeholder="Password">
            <input type="text" name="owner_id" placeholder="Your name (optional)" style="margin-top:0.5rem;">
            <button type="submit">Log in</button>
        </form>
    </div>
</body>
</html>
'''

OPEN_PATHS = {'/health', '/login'}


def create_app():
    """Create and configure the Flask application."""
    from app.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    # Secret key for sessions
    app.secret_key = os.getenv('SECRET_KEY', 'dev-secret-change-me')

    # ── Simple password auth ────────────────────────────────────────────
    from app.config import DASHBOARD_PASSWORD

    @app.before_request
    def require_login():
        if not DASHBOARD_PASSWORD:
            return  # No password set, open access (local dev)
        if request.path in OPEN_PATHS:
            return
        if session.get('authenticated'):
            return
        if request.path.startswith('/api/'):
            return jsonify({'error': 'Authentication required'}), 401
        return redirect('/login')

    @app.route('/login', methods=['GET', 'POST'])
    def login():
        if request.method == 'POST':
            if request.form.get('password') == DASHBOARD_PASSWORD:
                session['authenticated'] = True
                if request.form.get('owner_id'):
                    session['owner_id'] = request.form['owner_id'].strip()
                return redirect('/api/rankings')
            return render_template_string(LOGIN_PAGE, error=True)
        return render_template_string(LOGIN_PAGE, error=False)

    @app.route('/logout')
    def logout():
        session.clear()
        return redirect('/login')

    # Register blueprints
    from app.routes.dashboard import bp as dashboard_bp
    from app.routes.rankings import bp as rankings_bp
    from app.routes.qualify import bp as qualify_bp

    app.register_blueprint(dashboard_bp)
    app.register_blueprint(rankings_bp)
    app.register_blueprint(qualify_bp)

    # Initialize circuit breakers for external API services
    from app import extensions
    from app.services.circuit_breaker import init_breakers
    init_breakers(extensions.redis_client)

    # Import models so Base.metadata knows about them (required for SQLAlchemy).
    # Schema is managed by Alembic, no init_db() call.
    import importlib
    importlib.import_module('app.models.ranking_run')
    importlib.import_module('app.models.scored_connection')

    return app
