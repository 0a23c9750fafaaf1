from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from werkzeug.security import generate_password_hash, check_password_hash
from backend.models.auth import User, ROLES, ROLE_CREATOR
from backend.database.database import db
from backend.utils.errors import BadRequest, Unauthorized

auth_bp = Blueprint('auth', __name__)

@auth_bp.route('/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password')
    role = data.get('role', ROLE_CREATOR)
    
    if not email or not password:
        raise BadRequest('Email and password are required')
    
    if role not in ROLES:
        raise BadRequest('Invalid role')
    
    # Check if user exists
    if User.query.filter_by(email=email).first():
        raise BadRequest('Email already registered')
    
    new_user = User(
        email=email,
        password_hash=generate_password_hash(password),
        role=role
    )
    db.session.add(new_user)
    db.session.commit()
    
    login_user(new_user)
    return jsonify({'user': new_user.to_dict()}), 201

@auth_bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    
    user = User.query.filter_by(email=email).first()
    
    if not user or not check_password_hash(user.password_hash, password):
        raise Unauthorized('Invalid email or password')
    
    login_user(user)
    return jsonify({'user': user.to_dict()})

@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'ok': True})

@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify({
        'user': current_user.to_dict(),
        'has_active_subscription': current_user.has_active_subscription()
    })
