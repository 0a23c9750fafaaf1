from flask import Flask, jsonify
from flask_login import LoginManager
from backend.routes.auth import auth_bp
from backend.routes.deliveries import delivery_bp
from backend.routes.missions import mission_bp
from backend.routes.proposals import proposal_bp
from backend.routes.stripe import StripeBilling
from backend.utils.billing import billing_bp
from backend.utils.errors import register_error_handlers
from backend.utils.logging_config import configure_logging
from backend.database.database import db
from backend.models.auth import User
from backend.models.finance import Subscription
from backend.models.missions import Mission, Proposal, Delivery
from dotenv import load_dotenv
import os


def _env(name, default=None):
    """Environment value with surrounding quotes stripped"""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().strip('"').strip("'")


def create_app(test_config=None, billing=None):
    # Load environment variables
    load_dotenv()
    
    app = Flask(__name__)
    
    # Configuration
    app.config['SECRET_KEY'] = _env('SECRET_KEY', 'dev-secret-key-change-in-production')
    app.config['SQLALCHEMY_DATABASE_URI'] = _env('DATABASE_URL', 'sqlite:///creix.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['APP_BASE_URL'] = _env('APP_BASE_URL', 'http://localhost:5000')
    app.config['LOG_FORMAT'] = _env('LOG_FORMAT', 'json')
    app.config['LOG_LEVEL'] = _env('LOG_LEVEL', 'INFO')
    
    # Stripe configuration
    app.config['STRIPE_SECRET_KEY'] = _env('STRIPE_SECRET_KEY')
    app.config['STRIPE_WEBHOOK_SECRET'] = _env('STRIPE_WEBHOOK_SECRET')
    app.config['STRIPE_PRICE_CREATOR_MONTHLY'] = _env('STRIPE_PRICE_CREATOR_MONTHLY')
    app.config['STRIPE_PRICE_DESIGNER_MONTHLY'] = _env('STRIPE_PRICE_DESIGNER_MONTHLY')
    app.config['STRIPE_CURRENCY'] = _env('STRIPE_CURRENCY', 'eur')
    app.config['RECONCILE_SECRET'] = _env('RECONCILE_SECRET')
    
    if test_config:
        app.config.update(test_config)
    
    configure_logging(app.config['LOG_FORMAT'], app.config['LOG_LEVEL'])
    
    # Initialize extensions
    db.init_app(app)
    
    # One billing client for the whole process
    if billing is None:
        billing = StripeBilling(
            api_key=app.config['STRIPE_SECRET_KEY'],
            webhook_secret=app.config['STRIPE_WEBHOOK_SECRET'],
            currency=app.config['STRIPE_CURRENCY']
        )
    app.extensions['billing'] = billing
    
    # Initialize Flask-Login
    login_manager = LoginManager()
    login_manager.init_app(app)
    
    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))
    
    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Unauthorized', 'retryable': False}), 401
    
    register_error_handlers(app)
    
    # Register blueprints
    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(mission_bp, url_prefix='/api/missions')
    app.register_blueprint(proposal_bp, url_prefix='/api/proposals')
    app.register_blueprint(delivery_bp, url_prefix='/api/deliveries')
    app.register_blueprint(billing_bp, url_prefix='/api/billing')
    
    @app.route('/api/health')
    def health():
        return jsonify({'status': 'ok'})
    
    # Create tables
    with app.app_context():
        db.create_all()
    
    return app


if __name__ == '__main__':
    create_app().run(debug=True)
